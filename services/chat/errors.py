"""Exception taxonomy for the chat engine."""

from __future__ import annotations

from typing import Optional


class ChatError(RuntimeError):
	"""Base class for engine failures surfaced to the chat surface."""


class BackendUnreachableError(ChatError):
	"""The backend could not be reached; no response bytes were received."""

	def __init__(self, detail: str = "Backend unreachable. Is the model server running?") -> None:
		super().__init__(detail)


class BackendResponseError(ChatError):
	"""The backend answered with a non-success status before streaming."""

	def __init__(self, status_code: Optional[int], detail: str = "") -> None:
		self.status_code = status_code
		self.detail = detail
		message = f"Error: {status_code}" + (f" / {detail}" if detail else "")
		super().__init__(message)


class ModelValidationError(ChatError, ValueError):
	"""Submission blocked: unknown model id or duplicate comparison ids."""


class StreamError(ChatError):
	"""The response stream broke after it started."""


class StreamDecodeError(StreamError):
	"""The decoder refused to keep buffering an incomplete event."""


class GenerationCancelled(ChatError):
	"""The user stopped generation through the cancellation token."""


class ModelLoadError(ChatError):
	"""The backend failed to load the requested model."""


class DiscoveryError(ChatError):
	"""The model catalog could not be fetched or yielded no usable model."""


class SessionBusyError(ChatError):
	"""A session is already in flight for this conversation."""


class HistoryError(ChatError, ValueError):
	"""An edit or import request does not fit the stored history."""
