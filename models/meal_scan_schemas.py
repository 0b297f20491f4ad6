# models/meal_scan_schemas.py
from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Union
from datetime import datetime, timedelta
from enum import Enum

class MealScanRequest(BaseModel):
    image: Optional[str] = None  # raw base64 or data:<mime>;base64,<data>

class DetectedFoodItem(BaseModel):
    name: str
    portion: str = "1 serving"
    calories: float = Field(0, ge=0)
    protein: float = Field(0, ge=0)
    carbs: float = Field(0, ge=0)
    fat: float = Field(0, ge=0)
    confidence: float = Field(0.5, ge=0, le=1)

# Provider outcomes - exactly one of these per adapter call
class AnalysisSuccess(BaseModel):
    kind: Literal["success"] = "success"
    items: List[DetectedFoodItem]
    provider: Optional[str] = None

class AnalysisRateLimited(BaseModel):
    kind: Literal["rate_limited"] = "rate_limited"
    reason: str = "Provider rate limit reached"
    provider: Optional[str] = None

class AnalysisFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    reason: str
    provider: Optional[str] = None

AnalysisOutcome = Union[AnalysisSuccess, AnalysisRateLimited, AnalysisFailure]

class RateLimitState(BaseModel):
    key: str
    window_start: datetime
    count: int = 0
    limit: int
    window_seconds: int

    @property
    def reset_time(self) -> datetime:
        return self.window_start + timedelta(seconds=self.window_seconds)

class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_time: datetime

    @property
    def reset_epoch(self) -> int:
        return int(self.reset_time.timestamp())

class MealScanStatus(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED_BY_GATE = "rate_limited_by_gate"
    INVALID_INPUT = "invalid_input"
    ALL_PROVIDERS_RATE_LIMITED = "all_providers_rate_limited"
    ALL_PROVIDERS_FAILED = "all_providers_failed"

class MealScanResult(BaseModel):
    status: MealScanStatus
    foods: List[DetectedFoodItem] = []
    scan_id: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None
    rate_limit: Optional[RateLimitResult] = None

class MealScanRecord(BaseModel):
    """Row written to the meal_scans table after a successful analysis"""
    id: str
    user_id: str
    image_url: str
    detected_foods: List[DetectedFoodItem]
    selected_foods: Optional[List[DetectedFoodItem]] = None
    total_calories: float
    meal_name: str
    scan_date: str

class MealScanResponse(BaseModel):
    foods: List[DetectedFoodItem]
    scanId: Optional[str] = None

class ErrorResponse(BaseModel):
    error: str
    fallback: Optional[bool] = None
