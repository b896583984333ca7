"""Centralized logging with rotation suitable for approval audit trails."""
import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _build_handlers(app, level: int, formatter: logging.Formatter) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if app.config.get("LOG_TO_FILE", True):
        log_dir = app.config.get("LOG_DIR") or os.path.join(app.instance_path, "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "registry.log"), maxBytes=5_000_000, backupCount=5, encoding="utf-8"
        )
        handlers.append(file_handler)
    handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def init_logging(app) -> logging.Logger:
    level_name = (app.config.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    logger = logging.getLogger(app.name)
    # create_app may run several times per process (tests, CLI); never stack handlers.
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in _build_handlers(app, level, formatter):
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    app.logger.handlers = logger.handlers
    app.logger.setLevel(level)

    logger.info("Logging initialized", extra={"to_file": bool(app.config.get("LOG_TO_FILE", True))})
    return logger
