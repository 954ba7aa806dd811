"""Persisted per-user chat preferences."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from services.chat.prompts import DEFAULT_SYSTEM_PROMPT

ResponseStyle = Literal["concise", "standard", "detailed", "professional"]
UserLevel = Literal["", "beginner", "intermediate", "advanced", "expert"]


class ChatPreferences(BaseModel):
	"""Settings applied to every request in a conversation."""

	model: Optional[str] = None
	temperature: float = Field(default=0.7, ge=0.0, le=2.0)
	max_tokens: int = Field(default=2048, ge=1)
	system_prompt: str = DEFAULT_SYSTEM_PROMPT
	response_style: ResponseStyle = "standard"
	user_level: UserLevel = ""
	user_profession: str = ""
	user_interests: str = ""
	deep_dive: bool = False
	help_mode: bool = False
	show_logprobs: bool = False
