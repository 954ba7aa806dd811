"""WebSocket endpoint for streamed chat generation."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from starlette.websockets import WebSocketDisconnect

from services.chat.chat_context import ChatContext
from services.chat.ws_chat import ChatSocketHandler

router = APIRouter()


def _require_chat_context(websocket: WebSocket) -> ChatContext:
	context = getattr(websocket.app.state, "chat_context", None)
	if context is None:
		raise HTTPException(status_code=500, detail="Chat engine unavailable")
	return context


@router.websocket("/ws/{conversation_id}")
async def chat_socket(websocket: WebSocket, conversation_id: str, context: ChatContext = Depends(_require_chat_context)):
	"""Stream chat deltas for one conversation over one websocket."""
	await websocket.accept()
	handler = ChatSocketHandler(context, websocket, conversation_id)
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			try:
				payload = json.loads(raw)
			except ValueError:
				await websocket.send_text(json.dumps({"type": "error", "detail": "Payload must be JSON"}))
				continue
			if not isinstance(payload, dict):
				await websocket.send_text(json.dumps({"type": "error", "detail": "Payload must be a JSON object"}))
				continue
			await handler.handle(payload)
	finally:
		await handler.close()
	try:
		await websocket.close()
	except Exception:  # pylint: disable=broad-exception-caught
		pass
