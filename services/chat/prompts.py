"""Instruction composition for chat requests."""

from __future__ import annotations

from typing import Optional

DEFAULT_SYSTEM_PROMPT = (
	"You are a knowledgeable, friendly assistant. Give concise, balanced answers. "
	"Keep a tone between formal and casual, and write technical terms in their common English form."
)

RESPONSE_STYLES = {
	"concise": "\n\n[Response style] State only the key points. Avoid lengthy explanations.",
	"standard": "",
	"detailed": (
		"\n\n[Response style] Explain in detail. Include background, reasons and concrete examples."
	),
	"professional": (
		"\n\n[Response style] Emphasize technical depth. Stay academically precise, use terminology "
		"correctly and cite the evidence behind each claim."
	),
}

DEEP_DIVE_INSTRUCTION = (
	"\n\n[Deep dive] Before answering, analyze the question from several angles and cover:\n"
	"1. The underlying cause or background\n"
	"2. Alternative viewpoints or interpretations\n"
	"3. Connections to related concepts\n"
	"4. Potential problems or limitations\n"
	"5. Practical applications and next steps\n"
	"Structure the answer and make the reasoning explicit."
)

USER_LEVELS = {
	"beginner": "The user is a beginner. Avoid jargon and explain from the basics.",
	"intermediate": "The user is intermediate. Assume basic knowledge and use moderate terminology.",
	"advanced": "The user is advanced. Go deep into specialist content.",
	"expert": "The user is an expert. Assume deep knowledge and include current research and technical detail.",
}

APP_MANUAL = """
# Chat engine guide

## Overview
A chat front end for a local OpenAI-compatible model server. Conversations and
settings stay on this machine.

## Sending
Type a message and send it. Images and text files can be attached; images need
a vision-capable model (marked with an eye).

## Models
The model list comes from the server. Picking a model that is not loaded yet
loads it first; if loading fails the previous model stays selected.

## Stop, edit and regenerate
Stop keeps what was generated so far and saves it. Edit puts a past message
back in the input box and removes everything after it. Regenerate replaces the
last answer. After an error mid-answer, use regenerate to try again.

## Compare mode
Sends the same message to two different models side by side. Only the main
model's answer is saved to the history.

## Response style, deep dive and profile
Settings adjust the instruction sent with every request: a response style,
a deep-dive analysis mode and an optional description of the user.
"""


def help_instruction() -> str:
	"""Return the instruction used while the assistant answers questions about itself."""
	return (
		"You are the help assistant for this chat application. Answer the user's questions "
		"using the manual below. If the manual does not cover something, say that it is not "
		"in the manual.\n\n---\n"
		f"{APP_MANUAL}"
		"---\n\nAnswer based on the manual above."
	)


def response_style_instruction(style: Optional[str], deep_dive: bool = False) -> str:
	instruction = RESPONSE_STYLES.get(style or "standard", "")
	if deep_dive:
		instruction += DEEP_DIVE_INSTRUCTION
	return instruction


def user_profile_instruction(level: Optional[str], profession: Optional[str], interests: Optional[str]) -> str:
	"""Return the optional profile modifier, or an empty string when nothing is set."""
	profession = (profession or "").strip()
	interests = (interests or "").strip()
	if not level and not profession and not interests:
		return ""

	out = "\n\n[User profile]"
	if level in USER_LEVELS:
		out += f"\n- {USER_LEVELS[level]}"
	if profession:
		out += f"\n- Profession / field: {profession}"
	if interests:
		out += f"\n- Interests: {interests}"
	return out


def compose_instruction(
	base: Optional[str],
	*,
	style: Optional[str] = "standard",
	deep_dive: bool = False,
	level: Optional[str] = None,
	profession: Optional[str] = None,
	interests: Optional[str] = None,
	help_mode: bool = False,
) -> str:
	"""Return the single system instruction for a request."""
	if help_mode:
		return help_instruction()
	return (
		(base or DEFAULT_SYSTEM_PROMPT)
		+ response_style_instruction(style, deep_dive)
		+ user_profile_instruction(level, profession, interests)
	)
