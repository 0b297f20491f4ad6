# utils/food_payload.py
import json
import re
from typing import Any, List, Optional
from pydantic import BaseModel

from models.meal_scan_schemas import DetectedFoodItem

DEFAULT_PORTION = "1 serving"
DEFAULT_CONFIDENCE = 0.5

class FoodParseResult(BaseModel):
    """Either a list of foods or the reason the payload was rejected"""
    foods: Optional[List[DetectedFoodItem]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))

def to_number(value: Any, default: float = 0.0) -> float:
    """Accept ints, floats and numeric strings; anything else gets the default"""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return default
    else:
        return default

    # NaN and inf are not usable nutrition values
    if number != number or number in (float("inf"), float("-inf")):
        return default
    return number

def coerce_food_item(raw: Any) -> Optional[DetectedFoodItem]:
    """
    Turn one untrusted provider element into a DetectedFoodItem.
    Returns None when the element has no usable name.
    """
    if not isinstance(raw, dict):
        return None

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    portion = raw.get("portion")
    if not isinstance(portion, str) or not portion.strip():
        portion = DEFAULT_PORTION

    return DetectedFoodItem(
        name=name.strip(),
        portion=portion.strip(),
        calories=max(0.0, to_number(raw.get("calories"))),
        protein=max(0.0, to_number(raw.get("protein"))),
        carbs=max(0.0, to_number(raw.get("carbs"))),
        fat=max(0.0, to_number(raw.get("fat"))),
        confidence=clamp(to_number(raw.get("confidence"), DEFAULT_CONFIDENCE), 0.0, 1.0),
    )

def extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced {...} substring of free text, or None"""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None

def parse_provider_json(text: Any) -> FoodParseResult:
    """Parse a free-text model reply that should contain {"foods": [...]}"""
    if not isinstance(text, str) or not text.strip():
        return FoodParseResult(error="Empty provider response")

    # Drop markdown fences but keep what was inside them
    cleaned = re.sub(r"```(?:json)?", "", text)

    candidate = extract_json_object(cleaned)
    if candidate is None:
        return FoodParseResult(error="No JSON object found in provider response")

    try:
        payload = json.loads(candidate)
    except ValueError as e:
        return FoodParseResult(error=f"Invalid JSON in provider response: {e}")

    if not isinstance(payload, dict):
        return FoodParseResult(error="Provider JSON is not an object")

    raw_foods = payload.get("foods")
    if not isinstance(raw_foods, list):
        return FoodParseResult(error="Provider JSON has no 'foods' list")

    foods = []
    dropped = 0
    for raw in raw_foods:
        item = coerce_food_item(raw)
        if item is None:
            dropped += 1
            continue
        foods.append(item)

    if dropped:
        print(f"⚠️ Dropped {dropped} malformed food item(s) from provider response")

    return FoodParseResult(foods=foods)
