"""Public lookup of issued location identifiers."""
from flask import Blueprint, current_app, jsonify, request

from utils.location_identifier import lookup_identifier
from utils.security import sanitize_input

lookup_bp = Blueprint("lookup", __name__, url_prefix="/api")


@lookup_bp.route("/lookup", methods=["GET"])
def lookup():
    filters = sanitize_input(request.args)
    code = filters.get("id")
    if not code:
        return jsonify({"error": "Vui lòng nhập mã định danh"}), 400

    result = lookup_identifier(code)
    current_app.logger.info("Identifier lookup", extra={"query": code, "found": result["found"]})
    if not result["found"] and not result["suggestions"]:
        return jsonify(result), 404
    return jsonify(result)
