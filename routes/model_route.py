"""FastAPI routes for model discovery and selection."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.model_controller import list_models, refresh_models, select_model
from utils.http_errors import http_error

router = APIRouter(prefix="/models")


class SelectPayload(BaseModel):
	model: str


@router.get("")
async def list_models_route(request: Request):
	try:
		return await list_models(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.post("/refresh")
async def refresh_models_route(request: Request):
	try:
		return await refresh_models(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc


@router.post("/select")
async def select_model_route(request: Request, payload: SelectPayload):
	try:
		return await select_model(request, payload.model)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc
