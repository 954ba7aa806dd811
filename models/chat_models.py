"""Chat domain models shared by the session engine."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

ROLES = ("user", "assistant", "system")


class LoadState(str, Enum):
	"""Load state reported by the model management endpoint."""

	LOADED = "loaded"
	NOT_LOADED = "not-loaded"


class SessionState(str, Enum):
	"""Lifecycle of one request/response exchange."""

	PENDING = "pending"
	STREAMING = "streaming"
	DONE = "done"
	CANCELLED = "cancelled"
	FAILED = "failed"

	@property
	def finished(self) -> bool:
		return self in (SessionState.DONE, SessionState.CANCELLED, SessionState.FAILED)


@dataclass(frozen=True)
class Message:
	"""One persisted conversation entry.

	Attributes:
		role: user, assistant or system.
		text: Message body as stored (attachments already injected).
		image: Optional image data URL kept with user turns.
	"""

	role: str
	text: str
	image: Optional[str] = None

	def to_dict(self) -> Dict[str, Any]:
		"""Return the stored JSON shape (`imageData` only when present)."""
		data: Dict[str, Any] = {"role": self.role, "content": self.text}
		if self.image:
			data["imageData"] = self.image
		return data

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Message":
		return cls(role=data["role"], text=data.get("content") or "", image=data.get("imageData") or None)


@dataclass
class ModelDescriptor:
	"""A model discovered on the backend."""

	id: str
	load_state: LoadState = LoadState.LOADED
	vision_capable: bool = False
	quantization: Optional[str] = None
	max_context_length: Optional[int] = None

	@property
	def display_name(self) -> str:
		"""Model id with any publisher path removed."""
		return self.id.rsplit("/", 1)[-1]

	@property
	def label(self) -> str:
		label = self.display_name
		if self.vision_capable:
			label += " 👁️"
		if self.quantization:
			label += f" ({self.quantization})"
		return label

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"label": self.label,
			"load_state": self.load_state.value,
			"vision_capable": self.vision_capable,
			"quantization": self.quantization,
			"max_context_length": self.max_context_length,
		}


def _text_of(content: Any) -> str:
	if isinstance(content, str):
		return content
	if isinstance(content, list):
		return "\n".join(part.get("text", "") for part in content if part.get("type") == "text")
	return ""


@dataclass(frozen=True)
class GenerationRequest:
	"""Immutable request built fresh for each session."""

	model_id: str
	messages: List[Dict[str, Any]]
	temperature: float = 0.7
	max_tokens: int = 2048
	stream: bool = True

	def chat_body(self) -> Dict[str, Any]:
		"""Body for the streaming chat completions endpoint."""
		return {
			"model": self.model_id,
			"messages": self.messages,
			"stream": self.stream,
			"temperature": self.temperature,
			"max_tokens": self.max_tokens,
		}

	def responses_body(self, top_logprobs: int = 5) -> Dict[str, Any]:
		"""Body for the non-streaming Responses endpoint.

		System entries become ``instructions``; multi-part content is reduced
		to its text parts because that endpoint does not take images.
		"""
		instructions = "\n\n".join(
			_text_of(m.get("content")) for m in self.messages if m.get("role") == "system"
		)
		inputs = []
		for message in self.messages:
			if message.get("role") == "system":
				continue
			content = message.get("content")
			if isinstance(content, list):
				content = _text_of(content) or "(image message)"
			inputs.append({"role": message.get("role"), "content": content})

		body: Dict[str, Any] = {
			"model": self.model_id,
			"input": inputs,
			"temperature": self.temperature,
			"max_output_tokens": self.max_tokens,
			"top_logprobs": top_logprobs,
		}
		if instructions:
			body["instructions"] = instructions
		return body

	def has_image(self) -> bool:
		for message in self.messages:
			content = message.get("content")
			if isinstance(content, list) and any(part.get("type") == "image_url" for part in content):
				return True
		return False


@dataclass(frozen=True)
class StreamEvent:
	"""One decoded content delta, or the terminal signal."""

	delta_text: str = ""
	terminal: bool = False
	probability_info: Optional[List[Any]] = None


@dataclass
class SessionHandle:
	"""Mutable view of a session while it runs and after it finishes."""

	model_id: str
	state: SessionState = SessionState.PENDING
	accumulated_text: str = ""
	probability_info: List[Any] = field(default_factory=list)
	error: Optional[str] = None
	error_kind: Optional[str] = None
	committed: bool = False
	started_at: float = field(default_factory=time.time)
	finished_at: Optional[float] = None

	@property
	def latency(self) -> Optional[float]:
		if self.finished_at is None:
			return None
		return self.finished_at - self.started_at

	def to_dict(self) -> Dict[str, Any]:
		return {
			"model": self.model_id,
			"state": self.state.value,
			"text": self.accumulated_text,
			"error": self.error,
			"error_kind": self.error_kind,
			"committed": self.committed,
			"latency": self.latency,
		}


@dataclass(frozen=True)
class Attachment:
	"""Pre-materialized attachment: an image data URL or extracted file text."""

	kind: str
	name: str
	data: str
