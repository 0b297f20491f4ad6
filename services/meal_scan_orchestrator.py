# services/meal_scan_orchestrator.py
from typing import List, Optional

from models.meal_scan_schemas import (
    AnalysisOutcome, AnalysisSuccess, AnalysisRateLimited, AnalysisFailure,
    MealScanResult, MealScanStatus
)
from services.image_validator import validate_image, make_image_ref
from services.rate_limiter import RateLimiter, rate_limit_key, get_meal_scan_rate_limiter
from services.vision_provider import NutritionVisionProvider

MEAL_ANALYSIS_FEATURE = "meal_analysis"

class MealScanOrchestrator:
    """
    Runs one meal photo through: rate-limit gate -> image validation ->
    providers in priority order -> best-effort persistence.

    Providers are tried strictly one after another and each at most once.
    The first success wins; if all are exhausted, the last provider's outcome
    decides between "rate limited" and "failed".
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        providers: List[NutritionVisionProvider],
        persister
    ):
        if not providers:
            raise ValueError("MealScanOrchestrator needs at least one provider")

        self.rate_limiter = rate_limiter
        self.providers = list(providers)
        self.persister = persister

    async def run(self, user_id: str, raw_image) -> MealScanResult:
        # Gated
        gate = await self.rate_limiter.check(rate_limit_key(MEAL_ANALYSIS_FEATURE, user_id))
        if not gate.allowed:
            print(f"🚦 Meal scan rate limit hit for user {user_id}")
            return MealScanResult(status=MealScanStatus.RATE_LIMITED_BY_GATE, rate_limit=gate)

        # Validated
        validation = validate_image(raw_image)
        if not validation.ok:
            print(f"⚠️ Rejected meal image for user {user_id}: {validation.error}")
            return MealScanResult(
                status=MealScanStatus.INVALID_INPUT,
                error=validation.error,
                rate_limit=gate
            )

        image_base64 = validation.image_base64

        # Providers, in priority order
        outcome: Optional[AnalysisOutcome] = None
        for provider in self.providers:
            outcome = await self._call_provider(provider, image_base64)
            if isinstance(outcome, AnalysisSuccess):
                break
            print(f"⚠️ {provider.name} gave {outcome.kind}: {outcome.reason}")

        if isinstance(outcome, AnalysisSuccess):
            # Persisted
            scan_id = await self._persist(outcome, user_id, image_base64)
            return MealScanResult(
                status=MealScanStatus.SUCCESS,
                foods=outcome.items,
                scan_id=scan_id,
                provider=outcome.provider,
                rate_limit=gate
            )

        if isinstance(outcome, AnalysisRateLimited):
            status = MealScanStatus.ALL_PROVIDERS_RATE_LIMITED
        else:
            status = MealScanStatus.ALL_PROVIDERS_FAILED

        print(f"❌ All meal vision providers exhausted for user {user_id}: {status.value}")
        return MealScanResult(status=status, error=outcome.reason, rate_limit=gate)

    async def _call_provider(self, provider: NutritionVisionProvider, image_base64: str) -> AnalysisOutcome:
        try:
            return await provider.analyze(image_base64)
        except Exception as e:
            # Adapters should return outcomes; treat a raised error as a failure
            print(f"❌ Unexpected error from {provider.name}: {e}")
            return AnalysisFailure(reason=f"Unexpected {provider.name} error", provider=provider.name)

    async def _persist(self, outcome: AnalysisSuccess, user_id: str, image_base64: str) -> Optional[str]:
        try:
            return await self.persister.save_meal_scan(outcome.items, user_id, make_image_ref(image_base64))
        except Exception as e:
            print(f"❌ Meal scan persistence failed for user {user_id}: {e}")
            return None

# Global instance
_meal_scan_orchestrator = None

def build_meal_scan_orchestrator() -> MealScanOrchestrator:
    """Wire the production providers in priority order: primary, then fallback"""
    from services.openai_vision_service import get_openai_vision_service
    from services.logmeal_service import get_logmeal_service
    from services.supabase_service import get_supabase_service

    return MealScanOrchestrator(
        rate_limiter=get_meal_scan_rate_limiter(),
        providers=[get_openai_vision_service(), get_logmeal_service()],
        persister=get_supabase_service()
    )

def get_meal_scan_orchestrator() -> MealScanOrchestrator:
    global _meal_scan_orchestrator
    if _meal_scan_orchestrator is None:
        _meal_scan_orchestrator = build_meal_scan_orchestrator()
    return _meal_scan_orchestrator

def init_meal_scan_orchestrator():
    """Initialize meal scan orchestrator on startup"""
    global _meal_scan_orchestrator
    _meal_scan_orchestrator = build_meal_scan_orchestrator()
    names = " -> ".join(provider.name for provider in _meal_scan_orchestrator.providers)
    print(f"✅ Meal scan orchestrator initialized ({names})")
    return _meal_scan_orchestrator
