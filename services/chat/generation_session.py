"""One request/response exchange with the model server.

A session moves ``pending -> streaming -> done | cancelled | failed``:

- ``streaming`` starts when the first response bytes arrive.
- ``done``: the terminal signal arrived; the user turn and the accumulated
  text are committed as one write.
- ``cancelled``: the shared token fired; the partial text is annotated and
  still committed so later edit/regenerate actions match the screen.
- ``failed``: nothing is committed. Before any bytes, an unreachable server
  is reported as such; after partial output, the text is kept with an error
  marker and left for a manual regenerate.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from models.chat_models import GenerationRequest, Message, SessionHandle, SessionState, StreamEvent
from services.backend.response_parser import extract_output, extract_usage
from services.backend.stream_decoder import DEFAULT_BUFFER_LIMIT, StreamDecoder
from services.backend.transport import BackendTransport
from services.chat.cancellation import CancellationToken
from services.chat.conversation_store import ConversationStore, append_exchange
from services.chat.errors import (
	BackendResponseError,
	BackendUnreachableError,
	ChatError,
	GenerationCancelled,
	StreamError,
)

LOGGER = logging.getLogger(__name__)

CANCEL_ANNOTATION = "\n\n⏹ **Generation stopped.**"
ERROR_ANNOTATION = "\n\n⚠️ **An error occurred**: {detail}"
UNREACHABLE_NOTICE = "Could not connect. The model server may not be running or the base URL is wrong."

DeltaCallback = Callable[[StreamEvent], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class CommitTarget:
	"""Where a finished session writes its exchange.

	``base`` replaces the stored history the exchange is appended to.
	"""

	store: ConversationStore
	conversation_id: str
	base: Optional[Tuple[Message, ...]] = None


def build_request(
	model_id: str,
	context: Sequence[Dict[str, Any]],
	user_entry: Dict[str, Any],
	*,
	temperature: float = 0.7,
	max_tokens: int = 2048,
) -> GenerationRequest:
	"""Return a fresh request: built context followed by the new user turn."""
	return GenerationRequest(
		model_id=model_id,
		messages=[*context, user_entry],
		temperature=temperature,
		max_tokens=max_tokens,
		stream=True,
	)


class GenerationSession:
	"""Drive one request through the decoder and commit its outcome."""

	def __init__(
		self,
		transport: BackendTransport,
		request: GenerationRequest,
		user_message: Message,
		*,
		token: CancellationToken,
		on_delta: Optional[DeltaCallback] = None,
		commit: Optional[CommitTarget] = None,
		use_logprobs: bool = False,
		buffer_limit: int = DEFAULT_BUFFER_LIMIT,
	) -> None:
		self.transport = transport
		self.request = request
		self.user_message = user_message
		self.token = token
		self.on_delta = on_delta
		self.commit_target = commit
		# The Responses endpoint does not take images, so their context would be lost.
		self.use_logprobs = use_logprobs and not request.has_image()
		self.buffer_limit = buffer_limit
		self.handle = SessionHandle(model_id=request.model_id)

	@property
	def state(self) -> SessionState:
		return self.handle.state

	async def run(self) -> SessionHandle:
		"""Run the exchange to a terminal state and return the handle.

		Expected failures are recorded on the handle rather than raised.
		"""
		return await asyncio.ensure_future(self._drive())

	async def _drive(self) -> SessionHandle:
		self.token.attach()
		try:
			self.token.raise_if_cancelled()
			if self.use_logprobs:
				await self._run_responses()
			else:
				await self._run_stream()
			self._finish(SessionState.DONE)
		except GenerationCancelled:
			self._cancel()
		except asyncio.CancelledError:
			if not self.token.cancelled:
				raise
			asyncio.current_task().uncancel()
			self._cancel()
		except ChatError as exc:
			self._fail(exc)
		finally:
			self.token.detach()
			if not self.handle.state.finished:
				self._finish(SessionState.FAILED)

		LOGGER.info(
			"Session for %s ended %s (%d chars, %.2fs)",
			self.request.model_id,
			self.handle.state.value,
			len(self.handle.accumulated_text),
			self.handle.latency or 0.0,
		)
		if self.commit_target is not None and self.handle.state in (SessionState.DONE, SessionState.CANCELLED):
			await self.commit(self.commit_target)
		return self.handle

	async def commit(self, target: CommitTarget) -> List[Message]:
		"""Append the user turn and the accumulated text to the conversation."""
		messages = await append_exchange(
			target.store,
			target.conversation_id,
			self.user_message,
			self.handle.accumulated_text,
			base=target.base,
		)
		self.handle.committed = True
		return messages

	async def _run_stream(self) -> None:
		decoder = StreamDecoder(self.buffer_limit)
		async with self.transport.stream_chat(self.request.chat_body()) as chunks:
			async for chunk in chunks:
				self.token.raise_if_cancelled()
				if not chunk:
					continue
				if self.handle.state is SessionState.PENDING:
					self._set_state(SessionState.STREAMING)
				for event in decoder.feed(chunk):
					if event.terminal:
						return
					await self._apply(event)
		raise StreamError("The stream ended before completion.")

	async def _run_responses(self) -> None:
		document = await self.transport.create_response(self.request.responses_body())
		self.token.raise_if_cancelled()
		self._set_state(SessionState.STREAMING)

		usage = extract_usage(document)
		if usage["input_tokens"] is not None or usage["output_tokens"] is not None:
			LOGGER.info(
				"Token usage for %s: input=%s output=%s cached=%s",
				self.request.model_id,
				usage["input_tokens"],
				usage["output_tokens"],
				usage["cached_tokens"],
			)
		text, tokens = extract_output(document)
		await self._apply(StreamEvent(delta_text=text, probability_info=tokens or None))

	async def _apply(self, event: StreamEvent) -> None:
		# Deltas are applied in receipt order and only while streaming.
		if self.handle.state is not SessionState.STREAMING:
			return
		if event.delta_text:
			self.handle.accumulated_text += event.delta_text
		if event.probability_info:
			self.handle.probability_info.extend(event.probability_info)
		if self.on_delta is not None:
			result = self.on_delta(event)
			if inspect.isawaitable(result):
				await result

	def _set_state(self, state: SessionState) -> None:
		LOGGER.debug("Session for %s: %s -> %s", self.request.model_id, self.handle.state.value, state.value)
		self.handle.state = state

	def _finish(self, state: SessionState) -> None:
		self._set_state(state)
		self.handle.finished_at = time.time()

	def _cancel(self) -> None:
		self.handle.accumulated_text += CANCEL_ANNOTATION
		self._finish(SessionState.CANCELLED)

	def _fail(self, exc: ChatError) -> None:
		partial = self.handle.accumulated_text
		if isinstance(exc, BackendUnreachableError) and not partial:
			self.handle.error_kind = "unreachable"
			self.handle.error = UNREACHABLE_NOTICE
			LOGGER.error("Backend unreachable for %s: %s", self.request.model_id, exc)
		elif isinstance(exc, BackendResponseError) and not partial:
			self.handle.error_kind = "backend"
			self.handle.error = str(exc)
			LOGGER.error("Backend rejected request for %s: %s", self.request.model_id, exc)
		else:
			self.handle.error_kind = "stream"
			self.handle.error = str(exc)
			self.handle.accumulated_text = partial + ERROR_ANNOTATION.format(detail=exc)
			LOGGER.error("Stream failed for %s after %d chars: %s", self.request.model_id, len(partial), exc)
		self._finish(SessionState.FAILED)
