"""Build the bounded message list sent with a single generation request."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from models.chat_models import Message
from services.backend.media_inputs import build_user_content

DEFAULT_WINDOW = 6


def project_message(message: Message) -> Dict[str, Any]:
	"""Project a stored entry into its API shape (multi-part for user images)."""
	if message.role == "user" and message.image:
		return {"role": "user", "content": build_user_content(message.text, [message.image])}
	return {"role": message.role, "content": message.text}


def build_context(
	conversation: Sequence[Message],
	instruction: str,
	window: int = DEFAULT_WINDOW,
) -> List[Dict[str, Any]]:
	"""Return ``[system, ...at most window-1 recent entries]``.

	The system entry is always first and never truncated away. Entries that
	repeat the previous emitted role are skipped so roles alternate, a
	trailing assistant entry is dropped because a new one is about to be
	generated, and only the most recent ``window - 1`` entries are kept.
	Stored history is not touched.
	"""
	if window < 1:
		raise ValueError("window must be >= 1")

	system = {"role": "system", "content": instruction}
	projected: List[Dict[str, Any]] = []
	last_role = "system"
	for message in conversation:
		if message.role not in ("user", "assistant"):
			continue
		if message.role == last_role:
			continue
		projected.append(project_message(message))
		last_role = message.role

	if projected and projected[-1]["role"] == "assistant":
		projected.pop()

	keep = window - 1
	tail = projected[-keep:] if keep > 0 else []
	return [system, *tail]
