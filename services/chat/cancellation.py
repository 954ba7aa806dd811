"""Cooperative cancellation shared by one or two in-flight sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from services.chat.errors import GenerationCancelled

LOGGER = logging.getLogger(__name__)


class CancellationToken:
	"""A stop flag checked at every suspension point of a session.

	Sessions attach their running task while they await the network. Calling
	`cancel()` sets the flag and interrupts every attached task, so a read
	blocked on the backend unwinds immediately instead of waiting for the
	next chunk.
	"""

	def __init__(self) -> None:
		self._event = asyncio.Event()
		self._tasks: Set[asyncio.Task] = set()
		self.reason: Optional[str] = None

	@property
	def cancelled(self) -> bool:
		return self._event.is_set()

	def cancel(self, reason: str = "stopped by user") -> None:
		"""Trigger the token; idempotent."""
		if self._event.is_set():
			return
		self.reason = reason
		self._event.set()
		LOGGER.info("Cancellation requested (%s); interrupting %d task(s)", reason, len(self._tasks))
		for task in list(self._tasks):
			if not task.done():
				task.cancel()

	def raise_if_cancelled(self) -> None:
		if self._event.is_set():
			raise GenerationCancelled(self.reason or "cancelled")

	def attach(self, task: Optional[asyncio.Task] = None) -> None:
		"""Register the current (or given) task for interruption.

		A token that already fired is not applied to the task here; callers
		check `raise_if_cancelled()` right after attaching.
		"""
		task = task or asyncio.current_task()
		if task is not None:
			self._tasks.add(task)

	def detach(self, task: Optional[asyncio.Task] = None) -> None:
		task = task or asyncio.current_task()
		if task is not None:
			self._tasks.discard(task)

	async def wait(self) -> None:
		await self._event.wait()
