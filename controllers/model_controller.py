"""Model discovery and selection for the HTTP surface."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from controllers.chat_controller import get_context


def _catalog(request: Request) -> Dict[str, Any]:
	directory = get_context(request).directory
	return {
		"selected": directory.selection,
		"loading": directory.loading,
		"management_available": directory.management_available,
		"models": [descriptor.to_dict() for descriptor in directory.models.values()],
	}


async def list_models(request: Request) -> Dict[str, Any]:
	return _catalog(request)


async def refresh_models(request: Request) -> Dict[str, Any]:
	"""Re-run discovery; the persisted choice survives when still present."""
	await get_context(request).discover()
	return _catalog(request)


async def select_model(request: Request, model_id: str) -> Dict[str, Any]:
	"""Select a model, loading it on the server first when needed."""
	await get_context(request).select_model(model_id)
	return _catalog(request)
