"""Validation helpers for pre-materialized chat attachments."""

from typing import Iterable, List

from fastapi import HTTPException

from models.chat_models import Attachment

MAX_IMAGE_BYTES = 20 * 1024 * 1024
MAX_FILE_TEXT_BYTES = 2 * 1024 * 1024

ATTACHMENT_KINDS = ("image", "file")


def data_url_size(data_url: str) -> int:
    """Return the decoded size in bytes of a base64 data URL payload."""
    _, _, payload = data_url.partition(",")
    payload = payload.strip()
    padding = len(payload) - len(payload.rstrip("="))
    return max(0, len(payload) * 3 // 4 - padding)


def validate_attachment(attachment: Attachment) -> Attachment:
    """Reject attachments the engine cannot forward to the backend."""
    if attachment.kind not in ATTACHMENT_KINDS:
        raise HTTPException(status_code=415, detail=f"Unsupported attachment kind: {attachment.kind}")
    if not attachment.name:
        raise HTTPException(status_code=400, detail="Attachment must have a name.")

    if attachment.kind == "image":
        if not attachment.data.startswith("data:image/") or ";base64," not in attachment.data:
            raise HTTPException(status_code=415, detail=f"{attachment.name} is not a base64 image data URL.")
        if data_url_size(attachment.data) > MAX_IMAGE_BYTES:
            raise HTTPException(status_code=413, detail=f"{attachment.name} is too large (max 20 MB).")
    elif len(attachment.data.encode("utf-8")) > MAX_FILE_TEXT_BYTES:
        raise HTTPException(status_code=413, detail=f"{attachment.name} is too large (max 2 MB of text).")
    return attachment


def validate_attachments(attachments: Iterable[Attachment]) -> List[Attachment]:
    return [validate_attachment(attachment) for attachment in attachments]
