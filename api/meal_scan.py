# api/meal_scan.py
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from models.meal_scan_schemas import (
    MealScanRequest, MealScanResult, MealScanStatus, MealScanResponse, ErrorResponse
)
from services.meal_scan_orchestrator import MealScanOrchestrator, get_meal_scan_orchestrator
from services.image_validator import NO_IMAGE_MESSAGE
from utils.auth import get_current_user_id

router = APIRouter()

GATE_LIMITED_MESSAGE = "Too many meal scans. Please wait a minute and try again, or search for foods manually."
PROVIDERS_BUSY_MESSAGE = "AI services are busy right now. Please try again shortly or search for foods manually."
PROVIDERS_FAILED_MESSAGE = "Could not analyze the meal. Please try the manual food search instead."
INVALID_BODY_MESSAGE = "Invalid request body"
INTERNAL_ERROR_MESSAGE = "Internal server error"

def _error(
    status_code: int,
    message: str,
    fallback: Optional[bool] = None,
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    body = ErrorResponse(error=message, fallback=fallback).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body, headers=headers)

def compose_meal_scan_response(result: MealScanResult) -> JSONResponse:
    """Map the orchestrator's final state to status code, body and headers"""
    if result.status == MealScanStatus.SUCCESS:
        body = MealScanResponse(foods=result.foods, scanId=result.scan_id).model_dump(exclude_none=True)
        headers = {}
        if result.rate_limit is not None:
            headers["X-RateLimit-Remaining"] = str(result.rate_limit.remaining)
        return JSONResponse(status_code=200, content=body, headers=headers)

    if result.status == MealScanStatus.RATE_LIMITED_BY_GATE:
        headers = {"X-RateLimit-Remaining": "0"}
        if result.rate_limit is not None:
            headers["X-RateLimit-Reset"] = str(result.rate_limit.reset_epoch)
        return _error(429, GATE_LIMITED_MESSAGE, fallback=True, headers=headers)

    if result.status == MealScanStatus.INVALID_INPUT:
        return _error(400, result.error or NO_IMAGE_MESSAGE)

    if result.status == MealScanStatus.ALL_PROVIDERS_RATE_LIMITED:
        return _error(429, PROVIDERS_BUSY_MESSAGE, fallback=True)

    if result.status == MealScanStatus.ALL_PROVIDERS_FAILED:
        return _error(503, PROVIDERS_FAILED_MESSAGE, fallback=True)

    return _error(500, INTERNAL_ERROR_MESSAGE)

async def parse_meal_scan_request(request: Request) -> MealScanRequest:
    """Read the JSON body; bad JSON and non-object bodies raise ValueError (pydantic errors included)"""
    payload = await request.json()
    return MealScanRequest.model_validate(payload)

@router.post("/analyze-meal")
async def analyze_meal(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: MealScanOrchestrator = Depends(get_meal_scan_orchestrator)
):
    """Analyze a meal photo: rate-limit gate, validation, primary then fallback provider"""
    # The body is read only after the auth dependency has passed
    try:
        scan_request = await parse_meal_scan_request(request)
    except ValueError as e:
        print(f"⚠️ Bad meal scan body from user {user_id}: {e}")
        return _error(400, INVALID_BODY_MESSAGE)

    try:
        print(f"🍽️ Meal scan requested by user {user_id}")
        result = await orchestrator.run(user_id, scan_request.image)
        print(f"✅ Meal scan finished: {result.status.value}"
              f"{f' via {result.provider}' if result.provider else ''}")
        return compose_meal_scan_response(result)

    except Exception as e:
        print(f"❌ Meal analysis error: {e}")
        import traceback
        traceback.print_exc()
        return _error(500, INTERNAL_ERROR_MESSAGE)
