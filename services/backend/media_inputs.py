"""Utilities to build user-turn payloads for the chat completions API."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from models.chat_models import Attachment, Message


@dataclass(frozen=True)
class UserTurn:
    """A new user turn ready to be sent and, later, persisted.

    Attributes:
        api_text: Text sent to the model, with file contents injected.
        display_text: Text shown on the chat surface.
        images: Image data URLs attached to this turn.
    """

    api_text: str
    display_text: str
    images: Sequence[str] = ()

    def to_api_message(self) -> Dict[str, Any]:
        """Project the turn as plain text, or as text + image parts when images exist."""
        if not self.images:
            return {"role": "user", "content": self.api_text}
        return {"role": "user", "content": build_user_content(self.api_text, self.images)}

    def to_history(self) -> Message:
        """Stored form keeps only the first image."""
        return Message(role="user", text=self.api_text, image=self.images[0] if self.images else None)


def build_user_content(text: Optional[str], images: Sequence[str]) -> List[Dict[str, Any]]:
    """Compose a multi-part user content array: text part first, then each image."""
    parts: List[Dict[str, Any]] = []
    if text:
        parts.append({"type": "text", "text": text})
    for image_url in images:
        parts.append({"type": "image_url", "image_url": {"url": image_url}})
    return parts


def _file_block(attachment: Attachment) -> str:
    heading = "Attached PDF" if attachment.name.lower().endswith(".pdf") else "Attached file"
    return f"\n\n---\n📄 **{heading}: {attachment.name}**\n```\n{attachment.data}\n```"


def build_user_turn(text: str, attachments: Sequence[Attachment] = ()) -> UserTurn:
    """Merge typed text with pre-materialized attachments into a :class:`UserTurn`."""
    text = (text or "").strip()
    images = [a.data for a in attachments if a.kind == "image"]
    files = [a for a in attachments if a.kind == "file"]

    api_text = text
    if files:
        file_contents = "".join(_file_block(f) for f in files)
        api_text = text + file_contents if text else f"Attached file contents:{file_contents}"

    display_text = text
    if attachments:
        attach_line = "📎 Attached: " + ", ".join(a.name for a in attachments)
        display_text = f"{text}\n\n{attach_line}" if text else attach_line

    return UserTurn(api_text=api_text, display_text=display_text or "(attachments only)", images=tuple(images))
