"""Persistence contract for conversation history, plus an in-memory store."""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

from models.chat_models import Message


@runtime_checkable
class ConversationStore(Protocol):
	"""Get/put of the full ordered message array, keyed by conversation id."""

	async def load(self, conversation_id: str) -> List[Message]:
		...

	async def save(self, conversation_id: str, messages: Sequence[Message]) -> None:
		...


class InMemoryConversationStore:
	"""Keep conversations in a dictionary; used for tests and ephemeral runs."""

	def __init__(self) -> None:
		self._conversations: Dict[str, List[Message]] = {}

	async def load(self, conversation_id: str) -> List[Message]:
		return list(self._conversations.get(conversation_id, []))

	async def save(self, conversation_id: str, messages: Sequence[Message]) -> None:
		self._conversations[conversation_id] = list(messages)


async def append_exchange(
	store: ConversationStore,
	conversation_id: str,
	user_message: Message,
	assistant_text: str,
	*,
	base: Optional[Sequence[Message]] = None,
) -> List[Message]:
	"""Append a user turn and its assistant turn as one write.

	With ``base`` the exchange is appended to that history instead of the
	stored one, replacing whatever the store held.
	"""
	messages = list(base) if base is not None else await store.load(conversation_id)
	messages.append(user_message)
	messages.append(Message(role="assistant", text=assistant_text))
	await store.save(conversation_id, messages)
	return messages
