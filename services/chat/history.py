"""User-initiated edits of a stored conversation."""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Tuple

from models.chat_models import ROLES, Message
from services.chat.conversation_store import ConversationStore
from services.chat.errors import HistoryError

LOGGER = logging.getLogger(__name__)

MAX_IMPORT_BYTES = 10 * 1024 * 1024


def _check_index(messages: List[Message], index: int) -> None:
	if index < 0 or index >= len(messages):
		raise HistoryError(f"No message at index {index}.")


async def edit_from(store: ConversationStore, conversation_id: str, index: int) -> Tuple[Message, List[Message]]:
	"""Truncate the history before a user turn and return that turn.

	The returned message goes back into the input box; everything from
	``index`` onwards is dropped.
	"""
	messages = await store.load(conversation_id)
	_check_index(messages, index)
	target = messages[index]
	if target.role != "user":
		raise HistoryError("Only user messages can be edited.")
	remaining = messages[:index]
	await store.save(conversation_id, remaining)
	LOGGER.info("Conversation %s truncated to %d message(s) for edit", conversation_id, len(remaining))
	return target, remaining


def prepare_regenerate(messages: List[Message]) -> Tuple[Message, List[Message]]:
	"""Split off the last exchange without touching storage.

	Returns the user turn to re-send and the history that precedes it. The
	stored history is only replaced once the new answer is committed.
	"""
	remaining = list(messages)
	if remaining and remaining[-1].role == "assistant":
		remaining.pop()
	if not remaining or remaining[-1].role != "user":
		raise HistoryError("There is no user message to regenerate from.")
	user = remaining.pop()
	return user, remaining


async def delete_message(store: ConversationStore, conversation_id: str, index: int) -> List[Message]:
	messages = await store.load(conversation_id)
	_check_index(messages, index)
	del messages[index]
	await store.save(conversation_id, messages)
	return messages


async def clear(store: ConversationStore, conversation_id: str) -> None:
	await store.save(conversation_id, [])
	LOGGER.info("Conversation %s cleared", conversation_id)


async def export_history(store: ConversationStore, conversation_id: str) -> List[dict]:
	return [message.to_dict() for message in await store.load(conversation_id)]


def parse_import(payload: Any, *, raw_size: Optional[int] = None) -> List[Message]:
	"""Validate an imported history array.

	Args:
		payload: Decoded JSON, or the raw JSON text.
		raw_size: Size in bytes of the uploaded document, when known.
	"""
	if isinstance(payload, (str, bytes)):
		raw_size = len(payload.encode("utf-8") if isinstance(payload, str) else payload)
		if raw_size > MAX_IMPORT_BYTES:
			raise HistoryError("The history file is too large (max 10 MB).")
		try:
			payload = json.loads(payload)
		except ValueError as exc:
			raise HistoryError("The history file is not valid JSON.") from exc
	elif raw_size is not None and raw_size > MAX_IMPORT_BYTES:
		raise HistoryError("The history file is too large (max 10 MB).")

	if not isinstance(payload, list):
		raise HistoryError("The history must be an array of messages.")

	messages = []
	for position, item in enumerate(payload):
		if not isinstance(item, dict):
			raise HistoryError(f"Entry {position} is not an object.")
		role = item.get("role")
		content = item.get("content")
		image = item.get("imageData")
		if role not in ROLES:
			raise HistoryError(f"Entry {position} has an invalid role: {role!r}")
		if not isinstance(content, str):
			raise HistoryError(f"Entry {position} has no text content.")
		if image is not None and not isinstance(image, str):
			raise HistoryError(f"Entry {position} has an invalid image reference.")
		messages.append(Message(role=role, text=content, image=image or None))
	return messages


async def import_history(store: ConversationStore, conversation_id: str, payload: Any) -> List[Message]:
	messages = parse_import(payload)
	await store.save(conversation_id, messages)
	LOGGER.info("Imported %d message(s) into conversation %s", len(messages), conversation_id)
	return messages
