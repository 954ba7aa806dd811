from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from controllers.chat_controller import get_context
from models.preferences import ChatPreferences


async def get_preferences(request: Request) -> Dict[str, Any]:
	return get_context(request).preferences.model_dump()


async def update_preferences(request: Request, preferences: ChatPreferences) -> Dict[str, Any]:
	"""Store new preferences; a changed model goes through selection and loading."""
	context = get_context(request)
	requested_model = preferences.model
	await context.update_preferences(preferences.model_copy(update={"model": context.directory.selection}))
	if requested_model and requested_model != context.directory.selection:
		await context.select_model(requested_model)
	return context.preferences.model_dump()
