"""Run one user turn against two models at once."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from models.chat_models import GenerationRequest, Message, SessionHandle, SessionState, StreamEvent
from services.backend.catalog import ModelDirectory
from services.backend.stream_decoder import DEFAULT_BUFFER_LIMIT
from services.backend.transport import BackendTransport
from services.chat.cancellation import CancellationToken
from services.chat.errors import ModelValidationError
from services.chat.generation_session import CommitTarget, GenerationSession

LOGGER = logging.getLogger(__name__)

PRIMARY = "primary"
SECONDARY = "secondary"

SideCallback = Callable[[str, StreamEvent], Union[None, Awaitable[None]]]


@dataclass
class ComparisonResult:
	primary: SessionHandle
	secondary: SessionHandle
	committed_messages: Optional[List[Message]] = None

	@property
	def committed(self) -> bool:
		return self.primary.committed

	def to_dict(self) -> Dict[str, Any]:
		return {
			PRIMARY: self.primary.to_dict(),
			SECONDARY: self.secondary.to_dict(),
			"committed": self.committed,
		}


def validate_pair(directory: ModelDirectory, primary_id: Optional[str], secondary_id: Optional[str]) -> None:
	"""Reject the pair before anything is dispatched."""
	if not primary_id or not secondary_id:
		raise ModelValidationError("Comparison needs two models.")
	if primary_id == secondary_id:
		raise ModelValidationError("Pick a different model to compare against.")
	directory.validate(primary_id)
	directory.validate(secondary_id)


class ComparisonOrchestrator:
	"""Fan one context out to two sessions and commit the primary only.

	Both sessions share one cancellation token and run as independent tasks;
	neither waits on the other until the join. Only after both have finished
	is the primary's text written to history, and only when it completed or
	was stopped. The secondary is display-only.
	"""

	def __init__(
		self,
		transport: BackendTransport,
		directory: ModelDirectory,
		*,
		buffer_limit: int = DEFAULT_BUFFER_LIMIT,
	) -> None:
		self.transport = transport
		self.directory = directory
		self.buffer_limit = buffer_limit

	async def run(
		self,
		primary_id: str,
		secondary_id: str,
		messages: Sequence[Dict[str, Any]],
		user_message: Message,
		*,
		token: CancellationToken,
		commit: Optional[CommitTarget] = None,
		on_delta: Optional[SideCallback] = None,
		temperature: float = 0.7,
		max_tokens: int = 2048,
	) -> ComparisonResult:
		validate_pair(self.directory, primary_id, secondary_id)
		LOGGER.info("Comparing %s against %s", primary_id, secondary_id)

		sessions = [
			self._session(model_id, side, messages, user_message, token, on_delta, temperature, max_tokens)
			for model_id, side in ((primary_id, PRIMARY), (secondary_id, SECONDARY))
		]
		outcomes = await asyncio.gather(*(session.run() for session in sessions), return_exceptions=True)
		# Both branches are joined before any error is surfaced.
		for outcome in outcomes:
			if isinstance(outcome, BaseException):
				raise outcome

		primary, secondary = sessions
		result = ComparisonResult(primary=primary.handle, secondary=secondary.handle)
		if commit is not None and primary.state in (SessionState.DONE, SessionState.CANCELLED):
			result.committed_messages = await primary.commit(commit)
		LOGGER.info(
			"Comparison finished: %s=%s, %s=%s, committed=%s",
			primary_id,
			primary.state.value,
			secondary_id,
			secondary.state.value,
			result.committed,
		)
		return result

	def _session(
		self,
		model_id: str,
		side: str,
		messages: Sequence[Dict[str, Any]],
		user_message: Message,
		token: CancellationToken,
		on_delta: Optional[SideCallback],
		temperature: float,
		max_tokens: int,
	) -> GenerationSession:
		request = GenerationRequest(
			model_id=model_id,
			messages=list(messages),
			temperature=temperature,
			max_tokens=max_tokens,
		)

		async def forward(event: StreamEvent) -> None:
			if on_delta is None:
				return
			result = on_delta(side, event)
			if inspect.isawaitable(result):
				await result

		return GenerationSession(
			self.transport,
			request,
			user_message,
			token=token,
			on_delta=forward,
			buffer_limit=self.buffer_limit,
		)
