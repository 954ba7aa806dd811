"""History management for the HTTP surface.

Every mutation is refused while a response is being generated for the same
conversation.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from controllers.chat_controller import get_context
from services.chat import history


def _messages(messages) -> list:
	return [message.to_dict() for message in messages]


def _failed_turn(context, conversation_id: str):
	failed = context.failed_turn(conversation_id)
	return failed.to_dict() if failed else None


async def get_conversation(request: Request, conversation_id: str) -> Dict[str, Any]:
	context = get_context(request)
	messages = await context.store.load(conversation_id)
	return {
		"conversation_id": conversation_id,
		"busy": context.is_busy(conversation_id),
		"failed_turn": _failed_turn(context, conversation_id),
		"messages": _messages(messages),
	}


async def clear_conversation(request: Request, conversation_id: str) -> Dict[str, Any]:
	context = get_context(request)
	context.ensure_idle(conversation_id)
	await history.clear(context.store, conversation_id)
	context.forget_failed_turn(conversation_id)
	return {"conversation_id": conversation_id, "message_count": 0}


async def export_conversation(request: Request, conversation_id: str) -> list:
	return await history.export_history(get_context(request).store, conversation_id)


async def import_conversation(request: Request, conversation_id: str, payload: Any) -> Dict[str, Any]:
	context = get_context(request)
	context.ensure_idle(conversation_id)
	messages = await history.import_history(context.store, conversation_id, payload)
	context.forget_failed_turn(conversation_id)
	return {"conversation_id": conversation_id, "message_count": len(messages)}


async def edit_message(request: Request, conversation_id: str, index: int) -> Dict[str, Any]:
	"""Truncate before a user turn and hand its text back for editing."""
	context = get_context(request)
	context.ensure_idle(conversation_id)
	target, remaining = await history.edit_from(context.store, conversation_id, index)
	context.forget_failed_turn(conversation_id)
	return {
		"conversation_id": conversation_id,
		"text": target.text,
		"image": target.image,
		"messages": _messages(remaining),
	}


async def delete_message(request: Request, conversation_id: str, index: int) -> Dict[str, Any]:
	context = get_context(request)
	context.ensure_idle(conversation_id)
	remaining = await history.delete_message(context.store, conversation_id, index)
	context.forget_failed_turn(conversation_id)
	return {"conversation_id": conversation_id, "messages": _messages(remaining)}
