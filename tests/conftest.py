"""Shared fixtures for meal scan tests.

Nothing here talks to Supabase or a vision API: providers, persistence and
auth are replaced with in-process fakes or mocks.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from models.meal_scan_schemas import (
    AnalysisFailure,
    AnalysisOutcome,
    AnalysisRateLimited,
    AnalysisSuccess,
    DetectedFoodItem,
)
from services.meal_scan_orchestrator import MealScanOrchestrator
from services.rate_limiter import InMemoryRateLimitStore, RateLimiter
from services.vision_provider import NutritionVisionProvider

TEST_USER_ID = "7f7d1c1e-5a55-4a0c-9d0e-3f2b6a1e0c11"
SMALL_IMAGE = "data:image/jpeg;base64,AAAA"

APPLE = {
    "name": "Apple",
    "portion": "1 medium",
    "calories": 95,
    "protein": 0,
    "carbs": 25,
    "fat": 0,
    "confidence": 0.92,
}


class FakeClock:
    """Controllable UTC clock for rate limiter tests."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeProvider(NutritionVisionProvider):
    """Provider double that returns (or raises) a fixed outcome and counts calls."""

    def __init__(self, name: str, outcome: Union[AnalysisOutcome, Exception]) -> None:
        self.name = name
        self.outcome = outcome
        self.calls = 0
        self.images: List[str] = []

    async def analyze(self, image_base64: str) -> AnalysisOutcome:
        self.calls += 1
        self.images.append(image_base64)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakePersister:
    """Records saved scans; can be told to fail."""

    def __init__(self, scan_id: Optional[str] = "scan-123", error: Optional[Exception] = None) -> None:
        self.scan_id = scan_id
        self.error = error
        self.saved: List[dict] = []

    async def save_meal_scan(self, items: List[DetectedFoodItem], user_id: str, image_ref: str) -> Optional[str]:
        if self.error is not None:
            raise self.error
        self.saved.append({"items": items, "user_id": user_id, "image_ref": image_ref})
        return self.scan_id


def success(*foods: dict, provider: str = "fake") -> AnalysisSuccess:
    return AnalysisSuccess(items=[DetectedFoodItem(**food) for food in foods], provider=provider)


def rate_limited(provider: str = "fake") -> AnalysisRateLimited:
    return AnalysisRateLimited(provider=provider)


def failure(reason: str = "boom", provider: str = "fake") -> AnalysisFailure:
    return AnalysisFailure(reason=reason, provider=provider)


def mock_http_response(status: int, payload: Any = None, json_error: Optional[Exception] = None) -> MagicMock:
    """Async context manager mock standing in for `session.post(...)`."""
    response = MagicMock()
    response.status = status
    if json_error is not None:
        response.json = AsyncMock(side_effect=json_error)
    else:
        response.json = AsyncMock(return_value=payload)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def chat_completion(content: Optional[str]) -> MagicMock:
    """Minimal stand-in for an OpenAI chat completion object."""
    message = MagicMock()
    message.content = content
    choice = MagicMock()
    choice.message = message
    completion = MagicMock()
    completion.choices = [choice]
    return completion


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limit_store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture
def rate_limiter(rate_limit_store: InMemoryRateLimitStore, clock: FakeClock) -> RateLimiter:
    return RateLimiter(rate_limit_store, limit=5, window_seconds=60, clock=clock)


@pytest.fixture
def persister() -> FakePersister:
    return FakePersister()


@pytest.fixture
def provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Credentials for both real adapters; no request ever leaves the process."""
    monkeypatch.setenv("PRIMARY_VISION_API_KEY", "test-primary-key")
    monkeypatch.setenv("FALLBACK_VISION_API_KEY", "test-fallback-key")
    monkeypatch.setenv("FALLBACK_VISION_BASE_URL", "https://logmeal.test/v2")
    monkeypatch.setenv("PROVIDER_TIMEOUT_SECONDS", "5")


@pytest.fixture
def app_state() -> dict:
    """Holder the client fixture reads the orchestrator from."""
    return {}


@pytest_asyncio.fixture
async def client(app_state: dict) -> AsyncIterator[AsyncClient]:
    from main import app
    from services.meal_scan_orchestrator import get_meal_scan_orchestrator
    from utils.auth import get_current_user_id

    async def _user_id() -> str:
        return TEST_USER_ID

    def _orchestrator() -> MealScanOrchestrator:
        return app_state["orchestrator"]

    app.dependency_overrides[get_current_user_id] = _user_id
    app.dependency_overrides[get_meal_scan_orchestrator] = _orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()

