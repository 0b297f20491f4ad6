# services/vision_provider.py
import os
from abc import ABC, abstractmethod

from models.meal_scan_schemas import AnalysisOutcome

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 20.0

def provider_timeout_seconds() -> float:
    """Upper bound for every outbound provider call"""
    try:
        return float(os.getenv("PROVIDER_TIMEOUT_SECONDS", DEFAULT_PROVIDER_TIMEOUT_SECONDS))
    except ValueError:
        return DEFAULT_PROVIDER_TIMEOUT_SECONDS

class NutritionVisionProvider(ABC):
    """
    One external food-recognition API.

    analyze() must never raise: every failure is classified here and returned
    as AnalysisRateLimited or AnalysisFailure so the orchestrator can move on
    to the next provider.
    """

    name = "provider"

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def analyze(self, image_base64: str) -> AnalysisOutcome:
        ...
