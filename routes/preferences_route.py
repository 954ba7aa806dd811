from fastapi import APIRouter, HTTPException, Request

from controllers.preferences_controller import get_preferences, update_preferences
from models.preferences import ChatPreferences
from utils.http_errors import http_error

router = APIRouter(prefix="/preferences")


@router.get("")
async def get_preferences_route(request: Request):
	return await get_preferences(request)


@router.put("")
async def put_preferences_route(request: Request, payload: ChatPreferences):
	try:
		return await update_preferences(request, payload)
	except HTTPException:
		raise
	except Exception as exc:
		raise http_error(exc) from exc
