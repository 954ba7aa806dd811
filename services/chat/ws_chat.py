"""Dispatch chat websocket events to the session context."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Set

from fastapi import WebSocket

from models.chat_models import Attachment, SessionHandle, StreamEvent
from services.chat.chat_context import ChatContext
from services.chat.comparison import PRIMARY, SECONDARY
from utils.media_validation import validate_attachments

LOGGER = logging.getLogger(__name__)


def parse_attachments(raw: Any) -> List[Attachment]:
	"""Build attachments from `[{kind, name, data}]` frames."""
	if not raw:
		return []
	if not isinstance(raw, list):
		raise ValueError("attachments must be a list.")
	attachments = []
	for item in raw:
		if not isinstance(item, dict):
			raise ValueError("Each attachment must be an object.")
		attachments.append(
			Attachment(kind=str(item.get("kind") or ""), name=str(item.get("name") or ""), data=str(item.get("data") or ""))
		)
	return validate_attachments(attachments)


class ChatSocketHandler:
	"""Route websocket messages for a single conversation.

	Generation runs in a background task so that a `chat.stop` frame is read
	and applied while the response is still streaming.
	"""

	def __init__(self, context: ChatContext, websocket: WebSocket, conversation_id: str) -> None:
		self.context = context
		self.websocket = websocket
		self.conversation_id = conversation_id
		self._tasks: Set[asyncio.Task] = set()

	async def handle(self, payload: Dict[str, Any]) -> None:
		"""Process a single inbound websocket payload."""
		request_id = payload.get("request_id")
		message_type = payload.get("type")
		try:
			if message_type == "chat.stop":
				self.context.stop(self.conversation_id)
			elif message_type == "chat.send":
				self._start(request_id, "single", self._send(request_id, payload))
			elif message_type == "chat.compare":
				self._start(request_id, "compare", self._compare(request_id, payload))
			elif message_type == "chat.regenerate":
				self._start(request_id, "regenerate", self._regenerate(request_id))
			else:
				raise ValueError("Unsupported message type.")
		except Exception as exc:  # pylint: disable=broad-exception-caught
			await self._send_error(request_id, str(exc))

	async def close(self) -> None:
		"""Stop generation for this socket and wait for the background task."""
		if self._tasks:
			self.context.stop(self.conversation_id)
			await asyncio.gather(*self._tasks, return_exceptions=True)

	def _start(self, request_id: Any, mode: str, work) -> None:
		try:
			self.context.ensure_idle(self.conversation_id)
		except Exception:
			work.close()
			raise
		task = asyncio.create_task(self._run(request_id, mode, work))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _run(self, request_id: Any, mode: str, work) -> None:
		try:
			await self._emit({"type": "chat.started", "request_id": request_id, "mode": mode})
			await work
		except Exception as exc:  # pylint: disable=broad-exception-caught
			LOGGER.warning("Chat request %s failed: %s", request_id, exc)
			await self._send_error(request_id, str(exc))

	async def _send(self, request_id: Any, payload: Dict[str, Any]) -> None:
		attachments = parse_attachments(payload.get("attachments"))
		handle = await self.context.send_message(
			self.conversation_id,
			payload.get("text") or "",
			attachments,
			on_delta=self._forward(request_id, PRIMARY),
		)
		await self._finish(request_id, PRIMARY, handle)

	async def _regenerate(self, request_id: Any) -> None:
		handle = await self.context.regenerate(self.conversation_id, on_delta=self._forward(request_id, PRIMARY))
		await self._finish(request_id, PRIMARY, handle)

	async def _compare(self, request_id: Any, payload: Dict[str, Any]) -> None:
		attachments = parse_attachments(payload.get("attachments"))

		async def forward(side: str, event: StreamEvent) -> None:
			await self._emit_delta(request_id, side, event)

		result = await self.context.compare_message(
			self.conversation_id,
			payload.get("text") or "",
			attachments,
			secondary_id=payload.get("compare_model"),
			on_delta=forward,
		)
		await self._emit_completed(request_id, SECONDARY, result.secondary)
		await self._finish(request_id, PRIMARY, result.primary)

	def _forward(self, request_id: Any, side: str):
		async def forward(event: StreamEvent) -> None:
			await self._emit_delta(request_id, side, event)

		return forward

	async def _finish(self, request_id: Any, side: str, handle: SessionHandle) -> None:
		await self._emit_completed(request_id, side, handle)
		if handle.committed:
			messages = await self.context.store.load(self.conversation_id)
			await self._emit({"type": "chat.committed", "request_id": request_id, "message_count": len(messages)})

	async def _emit_delta(self, request_id: Any, side: str, event: StreamEvent) -> None:
		frame: Dict[str, Any] = {"type": "chat.delta", "request_id": request_id, "side": side, "text": event.delta_text}
		if event.probability_info:
			frame["logprobs"] = event.probability_info
		await self._emit(frame)

	async def _emit_completed(self, request_id: Any, side: str, handle: SessionHandle) -> None:
		await self._emit(
			{
				"type": "chat.completed",
				"request_id": request_id,
				"side": side,
				"model": handle.model_id,
				"state": handle.state.value,
				"text": handle.accumulated_text,
				"error": handle.error,
				"error_kind": handle.error_kind,
			}
		)

	async def _send_error(self, request_id: Any, detail: str) -> None:
		await self._emit({"type": "error", "request_id": request_id, "detail": detail})

	async def _emit(self, payload: Dict[str, Any]) -> None:
		await self.websocket.send_text(json.dumps(payload, ensure_ascii=False))
