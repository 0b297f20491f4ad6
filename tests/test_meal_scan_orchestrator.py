"""Tests for the gate -> validate -> providers -> persist sequence."""

import pytest

from conftest import (
    APPLE,
    SMALL_IMAGE,
    FakePersister,
    FakeProvider,
    failure,
    rate_limited,
    success,
)
from models.meal_scan_schemas import MealScanStatus
from services.image_validator import INVALID_FORMAT_MESSAGE, MAX_IMAGE_BYTES, TOO_LARGE_MESSAGE
from services.meal_scan_orchestrator import MealScanOrchestrator
from services.rate_limiter import RateLimiter

BANANA = dict(APPLE, name="Banana", calories=105, carbs=27)


def build(rate_limiter: RateLimiter, persister: FakePersister, *providers: FakeProvider) -> MealScanOrchestrator:
    return MealScanOrchestrator(rate_limiter=rate_limiter, providers=list(providers), persister=persister)


class TestProviderSequencing:
    @pytest.mark.asyncio
    async def test_primary_success_skips_fallback(self, rate_limiter: RateLimiter, persister: FakePersister) -> None:
        primary = FakeProvider("primary", success(APPLE))
        fallback = FakeProvider("fallback", success(BANANA))

        result = await build(rate_limiter, persister, primary, fallback).run("u1", SMALL_IMAGE)

        assert result.status == MealScanStatus.SUCCESS
        assert [f.name for f in result.foods] == ["Apple"]
        assert result.scan_id == "scan-123"
        assert primary.calls == 1
        assert fallback.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("primary_outcome", [rate_limited(), failure("timeout"), RuntimeError("adapter bug")])
    async def test_primary_problem_triggers_exactly_one_fallback(
        self, rate_limiter: RateLimiter, persister: FakePersister, primary_outcome: object
    ) -> None:
        primary = FakeProvider("primary", primary_outcome)  # type: ignore[arg-type]
        fallback = FakeProvider("fallback", success(BANANA, provider="fallback"))

        result = await build(rate_limiter, persister, primary, fallback).run("u1", SMALL_IMAGE)

        assert result.status == MealScanStatus.SUCCESS
        assert result.provider == "fallback"
        assert primary.calls == 1
        assert fallback.calls == 1
        assert len(persister.saved) == 1

    @pytest.mark.asyncio
    async def test_both_failed(self, rate_limiter: RateLimiter, persister: FakePersister) -> None:
        primary = FakeProvider("primary", failure())
        fallback = FakeProvider("fallback", failure())

        result = await build(rate_limiter, persister, primary, fallback).run("u1", SMALL_IMAGE)

        assert result.status == MealScanStatus.ALL_PROVIDERS_FAILED
        assert persister.saved == []
        assert (primary.calls, fallback.calls) == (1, 1)

    @pytest.mark.asyncio
    async def test_both_rate_limited(self, rate_limiter: RateLimiter, persister: FakePersister) -> None:
        primary = FakeProvider("primary", rate_limited())
        fallback = FakeProvider("fallback", rate_limited())

        result = await build(rate_limiter, persister, primary, fallback).run("u1", SMALL_IMAGE)

        assert result.status == MealScanStatus.ALL_PROVIDERS_RATE_LIMITED

    @pytest.mark.asyncio
    async def test_last_provider_decides_the_exhausted_status(
        self, rate_limiter: RateLimiter, persister: FakePersister
    ) -> None:
        limited_then_failed = build(
            rate_limiter, persister, FakeProvider("p", rate_limited()), FakeProvider("f", failure())
        )
        failed_then_limited = build(
            rate_limiter, persister, FakeProvider("p", failure()), FakeProvider("f", rate_limited())
        )

        assert (await limited_then_failed.run("u1", SMALL_IMAGE)).status == MealScanStatus.ALL_PROVIDERS_FAILED
        assert (await failed_then_limited.run("u2", SMALL_IMAGE)).status == MealScanStatus.ALL_PROVIDERS_RATE_LIMITED

    @pytest.mark.asyncio
    async def test_third_provider_needs_no_control_flow_change(
        self, rate_limiter: RateLimiter, persister: FakePersister
    ) -> None:
        providers = [
            FakeProvider("a", failure()),
            FakeProvider("b", rate_limited()),
            FakeProvider("c", success(APPLE, provider="c")),
        ]

        result = await build(rate_limiter, persister, *providers).run("u1", SMALL_IMAGE)

        assert result.provider == "c"
        assert [p.calls for p in providers] == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_providers_receive_stripped_base64(self, rate_limiter: RateLimiter, persister: FakePersister) -> None:
        primary = FakeProvider("primary", success(APPLE))

        await build(rate_limiter, persister, primary).run("u1", "data:image/png;base64,QUJD")

        assert primary.images == ["QUJD"]

    def test_requires_a_provider(self, rate_limiter: RateLimiter, persister: FakePersister) -> None:
        with pytest.raises(ValueError):
            build(rate_limiter, persister)


class TestGateAndValidation:
    @pytest.mark.asyncio
    async def test_gate_runs_before_validation_and_providers(
        self, rate_limiter: RateLimiter, persister: FakePersister
    ) -> None:
        primary = FakeProvider("primary", success(APPLE))
        orchestrator = build(rate_limiter, persister, primary)
        for _ in range(5):
            await orchestrator.run("u1", SMALL_IMAGE)

        result = await orchestrator.run("u1", "not base64!")

        assert result.status == MealScanStatus.RATE_LIMITED_BY_GATE
        assert result.rate_limit is not None
        assert result.rate_limit.remaining == 0
        assert primary.calls == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "image,message",
        [
            ("A" * (((MAX_IMAGE_BYTES // 3) + 1) * 4), TOO_LARGE_MESSAGE),
            ("data:image/jpeg;base64,@@@@", INVALID_FORMAT_MESSAGE),
        ],
    )
    async def test_invalid_images_never_reach_a_provider(
        self, rate_limiter: RateLimiter, persister: FakePersister, image: str, message: str
    ) -> None:
        primary = FakeProvider("primary", success(APPLE))
        fallback = FakeProvider("fallback", success(APPLE))

        result = await build(rate_limiter, persister, primary, fallback).run("u1", image)

        assert result.status == MealScanStatus.INVALID_INPUT
        assert result.error == message
        assert (primary.calls, fallback.calls) == (0, 0)


class TestPersistence:
    @pytest.mark.asyncio
    async def test_persistence_error_keeps_success(self, rate_limiter: RateLimiter) -> None:
        persister = FakePersister(error=RuntimeError("db down"))

        result = await build(rate_limiter, persister, FakeProvider("p", success(APPLE))).run("u1", SMALL_IMAGE)

        assert result.status == MealScanStatus.SUCCESS
        assert result.scan_id is None

    @pytest.mark.asyncio
    async def test_persisted_with_truncated_image_ref(self, rate_limiter: RateLimiter, persister: FakePersister) -> None:
        image = "QUJD" * 100

        await build(rate_limiter, persister, FakeProvider("p", success(APPLE))).run("u9", image)

        saved = persister.saved[0]
        assert saved["user_id"] == "u9"
        assert saved["image_ref"] == image[:100] + "..."
        assert saved["items"][0].name == "Apple"
