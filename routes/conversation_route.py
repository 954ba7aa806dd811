"""FastAPI routes for conversations: history management and generation."""

from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.chat_controller import regenerate, send_message, stop
from controllers.conversation_controller import (
	clear_conversation,
	delete_message,
	edit_message,
	export_conversation,
	get_conversation,
	import_conversation,
)
from models.chat_models import Attachment
from utils.http_errors import http_error

router = APIRouter(prefix="/conversations")


class AttachmentPayload(BaseModel):
	kind: str
	name: str
	data: str


class MessagePayload(BaseModel):
	text: str = ""
	attachments: List[AttachmentPayload] = []
	compare: bool = False
	compare_model: Optional[str] = None


class EditPayload(BaseModel):
	index: int


@router.get("/{conversation_id}")
async def get_conversation_route(request: Request, conversation_id: str):
	try:
		return await get_conversation(request, conversation_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.delete("/{conversation_id}")
async def clear_conversation_route(request: Request, conversation_id: str):
	try:
		return await clear_conversation(request, conversation_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.get("/{conversation_id}/export")
async def export_conversation_route(request: Request, conversation_id: str):
	try:
		return await export_conversation(request, conversation_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.post("/{conversation_id}/import")
async def import_conversation_route(request: Request, conversation_id: str):
	"""Replace the history with an exported JSON array (request body)."""
	try:
		raw = await request.body()
		return await import_conversation(request, conversation_id, raw.decode("utf-8", errors="replace"))
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.post("/{conversation_id}/edit")
async def edit_message_route(request: Request, conversation_id: str, payload: EditPayload):
	try:
		return await edit_message(request, conversation_id, payload.index)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.delete("/{conversation_id}/messages/{index}")
async def delete_message_route(request: Request, conversation_id: str, index: int):
	try:
		return await delete_message(request, conversation_id, index)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.post("/{conversation_id}/messages")
async def post_message_route(request: Request, conversation_id: str, payload: MessagePayload):
	"""Send a user turn and wait for the complete answer."""
	attachments = [Attachment(kind=a.kind, name=a.name, data=a.data) for a in payload.attachments]
	try:
		return await send_message(
			request,
			conversation_id,
			payload.text,
			attachments,
			compare_model=payload.compare_model,
			compare=payload.compare,
		)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.post("/{conversation_id}/regenerate")
async def regenerate_route(request: Request, conversation_id: str):
	try:
		return await regenerate(request, conversation_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.post("/{conversation_id}/stop")
async def stop_route(request: Request, conversation_id: str) -> Any:
	try:
		return await stop(request, conversation_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc
