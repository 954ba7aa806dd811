"""Generation entry points for the HTTP surface."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import Request

from models.chat_models import Attachment
from services.chat.chat_context import ChatContext
from utils.media_validation import validate_attachments


def get_context(request: Request) -> ChatContext:
	return request.app.state.chat_context


async def send_message(
	request: Request,
	conversation_id: str,
	text: str,
	attachments: List[Attachment],
	compare_model: Optional[str] = None,
	compare: bool = False,
) -> Dict[str, Any]:
	"""Run one exchange to completion and return its outcome.

	With `compare` (or an explicit `compare_model`) the turn is sent to two
	models; only the selected model's answer is saved.
	"""
	context = get_context(request)
	attachments = validate_attachments(attachments)
	if compare or compare_model:
		result = await context.compare_message(conversation_id, text, attachments, secondary_id=compare_model)
		return {"conversation_id": conversation_id, "mode": "compare", **result.to_dict()}

	handle = await context.send_message(conversation_id, text, attachments)
	return {"conversation_id": conversation_id, "mode": "single", "primary": handle.to_dict()}


async def regenerate(request: Request, conversation_id: str) -> Dict[str, Any]:
	handle = await get_context(request).regenerate(conversation_id)
	return {"conversation_id": conversation_id, "mode": "single", "primary": handle.to_dict()}


async def stop(request: Request, conversation_id: str) -> Dict[str, Any]:
	"""Trigger the conversation's cancellation token, if a session is running."""
	stopped = get_context(request).stop(conversation_id)
	return {"conversation_id": conversation_id, "stopped": stopped}
