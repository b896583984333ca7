"""Rejection reason catalog and folding of a reviewer's choice into history notes."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

REJECTION_REASONS: tuple[dict, ...] = (
    {
        "id": "incomplete_info",
        "label": "Thông tin không đầy đủ",
        "description": "Thiếu thông tin cần thiết như tên chủ sở hữu, địa chỉ, hoặc số CMND/CCCD",
    },
    {
        "id": "incorrect_location",
        "label": "Vị trí không chính xác",
        "description": "Tọa độ GPS hoặc địa chỉ không khớp với thực tế",
    },
    {
        "id": "poor_photo_quality",
        "label": "Ảnh chất lượng kém",
        "description": "Ảnh mờ, thiếu ánh sáng, hoặc không thể hiện rõ đối tượng khảo sát",
    },
    {
        "id": "missing_photos",
        "label": "Thiếu ảnh khảo sát",
        "description": "Cần thêm ảnh từ các góc độ khác nhau hoặc ảnh chi tiết",
    },
    {
        "id": "duplicate_survey",
        "label": "Khảo sát trùng lặp",
        "description": "Đối tượng này đã được khảo sát trước đó",
    },
    {
        "id": "invalid_boundary",
        "label": "Ranh giới không hợp lệ",
        "description": "Polygon ranh giới không chính xác hoặc không phù hợp với thực tế",
    },
    {
        "id": "wrong_object_type",
        "label": "Phân loại đối tượng sai",
        "description": "Loại đối tượng hoặc mục đích sử dụng đất không đúng",
    },
    {
        "id": "missing_entry_points",
        "label": "Thiếu thông tin lối vào",
        "description": "Chưa có thông tin về các lối vào của đối tượng",
    },
    {
        "id": "owner_verification_failed",
        "label": "Xác minh chủ sở hữu thất bại",
        "description": "Không thể xác minh thông tin chủ sở hữu",
    },
    {
        "id": "other",
        "label": "Lý do khác",
        "description": "Nhập lý do cụ thể bên dưới",
    },
)

REJECTION_REASON_IDS: tuple[str, ...] = tuple(r["id"] for r in REJECTION_REASONS)
OTHER_REASON_ID = "other"


class RejectionReasonError(ValueError):
    """Raised when a rejection payload does not match the catalog."""


@dataclass
class RejectionPayload:
    reason_id: str
    reason_label: str
    notes: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def reason_label(reason_id: str) -> Optional[str]:
    for reason in REJECTION_REASONS:
        if reason["id"] == reason_id:
            return reason["label"]
    return None


def build_rejection_payload(
    reason_id: str,
    custom_reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> RejectionPayload:
    label = reason_label(reason_id)
    if label is None:
        raise RejectionReasonError(f"Unknown rejection reason: {reason_id}")

    custom = (custom_reason or "").strip()
    if reason_id == OTHER_REASON_ID and not custom:
        raise RejectionReasonError("A custom reason is required when 'other' is selected")

    extra = (notes or "").strip()
    lines = [f"Lý do từ chối: {label}"]
    if reason_id == OTHER_REASON_ID:
        lines[0] = f"{lines[0]} - {custom}"
    if extra:
        lines.append(f"Ghi chú: {extra}")

    metadata: Dict[str, Any] = {
        "rejection_reason": {
            "id": reason_id,
            "label": label,
            "custom_reason": custom if reason_id == OTHER_REASON_ID else None,
        }
    }
    if extra:
        metadata["additional_notes"] = extra
    return RejectionPayload(reason_id=reason_id, reason_label=label, notes="\n".join(lines), metadata=metadata)
