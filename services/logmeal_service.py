# services/logmeal_service.py
import aiohttp
import asyncio
import base64
import binascii
import os
from typing import Dict, Any, Optional, List, Tuple

from models.meal_scan_schemas import (
    AnalysisOutcome, AnalysisSuccess, AnalysisRateLimited, AnalysisFailure, DetectedFoodItem
)
from services.vision_provider import NutritionVisionProvider, provider_timeout_seconds
from utils.food_payload import clamp, to_number

# Nutrient codes in the nutritionalInfo response
NUTRIENT_CODES = {
    "protein": "PROCNT",
    "carbs": "CHOCDF",
    "fat": "FAT",
}

class ProviderRateLimited(Exception):
    pass

class LogMealService(NutritionVisionProvider):
    """
    Fallback provider with a two-step protocol: segment the image, then ask
    for nutrition of the returned imageId. A failed second step degrades to
    names-only items instead of failing the request.
    """

    name = "logmeal"

    def __init__(self):
        self.api_key = os.getenv("FALLBACK_VISION_API_KEY") or os.getenv("LOGMEAL_API_KEY")
        self.base_url = os.getenv("FALLBACK_VISION_BASE_URL", "https://api.logmeal.com/v2").rstrip("/")
        self.timeout = provider_timeout_seconds()

        if not self.api_key:
            print("⚠️ FALLBACK_VISION_API_KEY / LOGMEAL_API_KEY not set - fallback meal vision disabled")
        else:
            print("✅ LogMeal fallback vision service initialized")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def analyze(self, image_base64: str) -> AnalysisOutcome:
        if not self.api_key:
            return AnalysisFailure(reason="Fallback vision provider not configured", provider=self.name)

        try:
            image_bytes = base64.b64decode(image_base64)
        except (binascii.Error, ValueError):
            return AnalysisFailure(reason="Image could not be decoded for fallback provider", provider=self.name)

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            try:
                print(f"🔍 Fallback segmentation request ({len(image_bytes)} bytes)")
                segmentation = await self._segment(session, image_bytes)
            except ProviderRateLimited:
                print("⚠️ Fallback vision provider rate limited")
                return AnalysisRateLimited(reason="Fallback vision provider quota exhausted", provider=self.name)
            except asyncio.TimeoutError:
                print(f"❌ Fallback segmentation timed out after {self.timeout}s")
                return AnalysisFailure(reason="Fallback vision provider timed out", provider=self.name)
            except (aiohttp.ClientError, ValueError) as e:
                print(f"❌ Fallback segmentation failed: {e}")
                return AnalysisFailure(reason=f"Fallback segmentation failed: {e}", provider=self.name)

            image_id, segments = self._parse_segmentation(segmentation)
            if image_id is None:
                return AnalysisFailure(reason="Fallback segmentation returned no imageId", provider=self.name)
            if not segments:
                return AnalysisFailure(reason="Fallback segmentation recognized no foods", provider=self.name)

            nutrition_items = await self._nutrition_items(session, image_id)

        items = self._zip_items(segments, nutrition_items)
        print(f"✅ Fallback vision detected {len(items)} food item(s)"
              f"{'' if nutrition_items else ' (names only, nutrition unavailable)'}")
        return AnalysisSuccess(items=items, provider=self.name)

    async def _post_json(self, session: aiohttp.ClientSession, url: str, **kwargs) -> Any:
        async with session.post(url, headers=self._headers(), **kwargs) as response:
            if response.status == 429:
                raise ProviderRateLimited()
            if response.status < 200 or response.status >= 300:
                raise ValueError(f"HTTP {response.status} from {url}")
            try:
                return await response.json(content_type=None)
            except ValueError:
                raise ValueError(f"Non-JSON body from {url}")

    async def _segment(self, session: aiohttp.ClientSession, image_bytes: bytes) -> Any:
        form = aiohttp.FormData()
        form.add_field("image", image_bytes, filename="meal.jpg", content_type="image/jpeg")
        return await self._post_json(session, f"{self.base_url}/image/segmentation/complete", data=form)

    async def _nutrition_items(self, session: aiohttp.ClientSession, image_id: Any) -> List[Any]:
        """Second step. Any problem here means 'no nutrition', never a failure."""
        try:
            payload = await self._post_json(
                session,
                f"{self.base_url}/recipe/nutritionalInfo",
                json={"imageId": image_id},
            )
        except ProviderRateLimited:
            print("⚠️ Fallback nutrition lookup rate limited, returning names only")
            return []
        except asyncio.TimeoutError:
            print("⚠️ Fallback nutrition lookup timed out, returning names only")
            return []
        except (aiohttp.ClientError, ValueError) as e:
            print(f"⚠️ Fallback nutrition lookup failed, returning names only: {e}")
            return []

        if not isinstance(payload, dict):
            return []
        items = payload.get("nutritional_info_per_item")
        return items if isinstance(items, list) else []

    def _parse_segmentation(self, payload: Any) -> Tuple[Optional[Any], List[Tuple[str, float]]]:
        """Returns (imageId, [(name, confidence), ...]) from an untrusted payload"""
        if not isinstance(payload, dict):
            return None, []

        image_id = payload.get("imageId")
        if isinstance(image_id, bool) or not isinstance(image_id, (int, str)) or image_id == "":
            image_id = None

        segments = []
        results = payload.get("segmentation_results")
        if not isinstance(results, list):
            return image_id, segments

        for region in results:
            if not isinstance(region, dict):
                continue
            recognition = region.get("recognition_results")
            if not isinstance(recognition, list) or not recognition:
                continue
            best = recognition[0]
            if not isinstance(best, dict):
                continue
            name = best.get("name")
            if not isinstance(name, str) or not name.strip():
                continue
            confidence = clamp(to_number(best.get("prob"), 0.5), 0.0, 1.0)
            segments.append((name.strip(), confidence))

        return image_id, segments

    def _zip_items(self, segments: List[Tuple[str, float]], nutrition_items: List[Any]) -> List[DetectedFoodItem]:
        """Pair segment i with nutrition i; a missing or malformed entry means zeros"""
        items = []
        for index, (name, confidence) in enumerate(segments):
            nutrition = nutrition_items[index] if index < len(nutrition_items) else None
            macros = self._macros(nutrition)
            items.append(DetectedFoodItem(
                name=name,
                portion=macros["portion"],
                calories=macros["calories"],
                protein=macros["protein"],
                carbs=macros["carbs"],
                fat=macros["fat"],
                confidence=confidence,
            ))
        return items

    def _macros(self, nutrition: Any) -> Dict[str, Any]:
        macros = {"portion": "1 serving", "calories": 0.0, "protein": 0.0, "carbs": 0.0, "fat": 0.0}
        if not isinstance(nutrition, dict):
            return macros

        serving_size = to_number(nutrition.get("serving_size"))
        if serving_size > 0:
            macros["portion"] = f"{round(serving_size)} g"

        info = nutrition.get("nutritional_info")
        if not isinstance(info, dict):
            return macros

        macros["calories"] = max(0.0, to_number(info.get("calories")))

        nutrients = info.get("totalNutrients")
        if isinstance(nutrients, dict):
            for field, code in NUTRIENT_CODES.items():
                entry = nutrients.get(code)
                if isinstance(entry, dict):
                    macros[field] = max(0.0, to_number(entry.get("quantity")))

        return macros

# Singleton instance
_logmeal_service = None

def get_logmeal_service():
    global _logmeal_service
    if _logmeal_service is None:
        _logmeal_service = LogMealService()
    return _logmeal_service

def init_logmeal_service():
    """Initialize LogMeal service on startup"""
    global _logmeal_service
    _logmeal_service = LogMealService()
    return _logmeal_service
