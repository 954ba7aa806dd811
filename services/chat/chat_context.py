"""Explicit session context shared by the HTTP and websocket surfaces."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from models.chat_models import Attachment, Message, ModelDescriptor, SessionHandle, SessionState
from models.preferences import ChatPreferences
from services.backend.catalog import ModelDirectory
from services.backend.media_inputs import build_user_turn
from services.backend.stream_decoder import DEFAULT_BUFFER_LIMIT
from services.backend.transport import BackendTransport
from services.chat import history
from services.chat.cancellation import CancellationToken
from services.chat.comparison import ComparisonOrchestrator, ComparisonResult, SideCallback
from services.chat.context_builder import DEFAULT_WINDOW, build_context, project_message
from services.chat.conversation_store import ConversationStore
from services.chat.errors import ModelValidationError, SessionBusyError
from services.chat.generation_session import CommitTarget, DeltaCallback, GenerationSession, build_request
from services.chat.prompts import compose_instruction

LOGGER = logging.getLogger(__name__)


class ChatContext:
	"""Current selection, discovered set and in-flight tokens per conversation.

	Every operation that touches the backend or a stored conversation goes
	through this object; nothing reads module-level state.
	"""

	def __init__(
		self,
		transport: BackendTransport,
		directory: ModelDirectory,
		store: ConversationStore,
		*,
		preferences: Optional[ChatPreferences] = None,
		settings=None,
		window: int = DEFAULT_WINDOW,
		buffer_limit: int = DEFAULT_BUFFER_LIMIT,
	) -> None:
		self.transport = transport
		self.directory = directory
		self.store = store
		self.settings = settings
		self.preferences = preferences or ChatPreferences()
		self.window = window
		self.buffer_limit = buffer_limit
		self._active: Dict[str, CancellationToken] = {}
		self._failed_turns: Dict[str, Tuple[Message, dict]] = {}

	# ------------------------------------------------------------------
	# In-flight bookkeeping

	def is_busy(self, conversation_id: str) -> bool:
		return conversation_id in self._active

	def ensure_idle(self, conversation_id: str) -> None:
		if self.is_busy(conversation_id):
			raise SessionBusyError("A response is still being generated for this conversation.")

	@asynccontextmanager
	async def exclusive(self, conversation_id: str) -> AsyncIterator[CancellationToken]:
		"""Reserve the conversation for one session and hand out its token."""
		self.ensure_idle(conversation_id)
		token = CancellationToken()
		self._active[conversation_id] = token
		try:
			yield token
		finally:
			if self._active.get(conversation_id) is token:
				del self._active[conversation_id]

	def stop(self, conversation_id: str) -> bool:
		"""Trigger the conversation's token. Returns False when nothing is running."""
		token = self._active.get(conversation_id)
		if token is None:
			return False
		token.cancel()
		return True

	# ------------------------------------------------------------------
	# Models and preferences

	async def discover(self) -> Optional[str]:
		selection = await self.directory.discover(preferred=self.preferences.model or self.directory.selection)
		await self._remember_selection()
		return selection

	async def select_model(self, model_id: str) -> ModelDescriptor:
		descriptor = await self.directory.select(model_id)
		await self._remember_selection()
		return descriptor

	async def update_preferences(self, preferences: ChatPreferences) -> ChatPreferences:
		self.preferences = preferences
		if self.settings is not None:
			await self.settings.save_preferences(preferences)
		return preferences

	async def _remember_selection(self) -> None:
		selection = self.directory.selection
		if selection and selection != self.preferences.model:
			await self.update_preferences(self.preferences.model_copy(update={"model": selection}))

	def instruction(self) -> str:
		prefs = self.preferences
		return compose_instruction(
			prefs.system_prompt,
			style=prefs.response_style,
			deep_dive=prefs.deep_dive,
			level=prefs.user_level or None,
			profession=prefs.user_profession,
			interests=prefs.user_interests,
			help_mode=prefs.help_mode,
		)

	def default_secondary(self, primary_id: str) -> Optional[str]:
		for model_id in self.directory.discovered_ids:
			if model_id != primary_id:
				return model_id
		return None

	# ------------------------------------------------------------------
	# Generation

	async def send_message(
		self,
		conversation_id: str,
		text: str,
		attachments: Sequence[Attachment] = (),
		*,
		on_delta: Optional[DeltaCallback] = None,
	) -> SessionHandle:
		"""Send a new user turn to the selected model and commit the outcome."""
		turn = build_user_turn(text, attachments)
		if not turn.api_text and not turn.images:
			raise ValueError("Message text or an attachment is required.")
		async with self.exclusive(conversation_id) as token:
			user_message, api_message = turn.to_history(), turn.to_api_message()
			handle = await self._generate(conversation_id, user_message, api_message, token, on_delta)
			self._track_failed_turn(conversation_id, handle, user_message, api_message)
			return handle

	async def compare_message(
		self,
		conversation_id: str,
		text: str,
		attachments: Sequence[Attachment] = (),
		*,
		secondary_id: Optional[str] = None,
		on_delta: Optional[SideCallback] = None,
	) -> ComparisonResult:
		"""Send one user turn to the selected model and a second one side by side."""
		turn = build_user_turn(text, attachments)
		if not turn.api_text and not turn.images:
			raise ValueError("Message text or an attachment is required.")
		primary_id = self.directory.selection
		secondary_id = secondary_id or self.default_secondary(primary_id or "")
		if secondary_id is None:
			raise ModelValidationError("Comparison needs at least two discovered models.")

		async with self.exclusive(conversation_id) as token:
			conversation = await self.store.load(conversation_id)
			user_message, api_message = turn.to_history(), turn.to_api_message()
			messages = [*build_context(conversation, self.instruction(), self.window), api_message]
			self._warn_on_images(primary_id, bool(turn.images))
			self._warn_on_images(secondary_id, bool(turn.images))
			orchestrator = ComparisonOrchestrator(self.transport, self.directory, buffer_limit=self.buffer_limit)
			result = await orchestrator.run(
				primary_id,
				secondary_id,
				messages,
				user_message,
				token=token,
				commit=CommitTarget(self.store, conversation_id),
				on_delta=on_delta,
				temperature=self.preferences.temperature,
				max_tokens=self.preferences.max_tokens,
			)
			self._track_failed_turn(conversation_id, result.primary, user_message, api_message)
			return result

	async def regenerate(self, conversation_id: str, *, on_delta: Optional[DeltaCallback] = None) -> SessionHandle:
		"""Answer the last user turn again.

		After a failed send the failed turn is re-sent on top of the stored
		history. Otherwise the last stored exchange is replaced, but only once
		the new answer is committed; a failed run leaves the history as it was.
		"""
		async with self.exclusive(conversation_id) as token:
			self.directory.validate(self.directory.selection)
			failed = self._failed_turns.get(conversation_id)
			if failed is not None:
				user_message, api_message = failed
				handle = await self._generate(conversation_id, user_message, api_message, token, on_delta)
				self._track_failed_turn(conversation_id, handle, user_message, api_message)
				return handle

			user, remaining = history.prepare_regenerate(await self.store.load(conversation_id))
			return await self._generate(
				conversation_id, user, project_message(user), token, on_delta, base=remaining
			)

	def failed_turn(self, conversation_id: str) -> Optional[Message]:
		"""Return the user turn of the last failed send, if it is still pending."""
		failed = self._failed_turns.get(conversation_id)
		return failed[0] if failed else None

	def forget_failed_turn(self, conversation_id: str) -> None:
		"""Drop a pending failed turn; called whenever the stored history is edited."""
		self._failed_turns.pop(conversation_id, None)

	def _track_failed_turn(
		self, conversation_id: str, handle: SessionHandle, user_message: Message, api_message: dict
	) -> None:
		if handle.state is SessionState.FAILED:
			self._failed_turns[conversation_id] = (user_message, api_message)
		elif handle.committed:
			self._failed_turns.pop(conversation_id, None)

	async def _generate(
		self,
		conversation_id: str,
		user_message: Message,
		api_message: dict,
		token: CancellationToken,
		on_delta: Optional[DeltaCallback],
		*,
		base: Optional[List[Message]] = None,
	) -> SessionHandle:
		model_id = self.directory.selection
		self.directory.validate(model_id)

		conversation = base if base is not None else await self.store.load(conversation_id)
		context = build_context(conversation, self.instruction(), self.window)
		self._warn_on_images(model_id, bool(user_message.image))

		request = build_request(
			model_id,
			context,
			api_message,
			temperature=self.preferences.temperature,
			max_tokens=self.preferences.max_tokens,
		)
		session = GenerationSession(
			self.transport,
			request,
			user_message,
			token=token,
			on_delta=on_delta,
			commit=CommitTarget(self.store, conversation_id, tuple(base) if base is not None else None),
			use_logprobs=self.preferences.show_logprobs,
			buffer_limit=self.buffer_limit,
		)
		return await session.run()

	def _warn_on_images(self, model_id: Optional[str], has_image: bool) -> None:
		if not has_image or not model_id:
			return
		descriptor = self.directory.get(model_id)
		if descriptor is not None and not descriptor.vision_capable:
			LOGGER.warning("Sending an image to %s, which may not support vision input", model_id)
