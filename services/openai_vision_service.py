# services/openai_vision_service.py
import openai
import os
from typing import Optional

from models.meal_scan_schemas import AnalysisOutcome, AnalysisSuccess, AnalysisRateLimited, AnalysisFailure
from services.vision_provider import NutritionVisionProvider, provider_timeout_seconds
from utils.food_payload import parse_provider_json

MEAL_VISION_PROMPT = """You are a nutrition analysis expert. Analyze the food image and identify all visible food items.
For each food item, estimate:
- Name of the food
- Portion size (e.g., "1 cup", "150g", "1 medium")
- Calories
- Protein (grams)
- Carbohydrates (grams)
- Fat (grams)
- Confidence level (0.0 to 1.0)

Respond ONLY with valid JSON in this exact format:
{
  "foods": [
    {
      "name": "Food Name",
      "portion": "portion size",
      "calories": 200,
      "protein": 10,
      "carbs": 25,
      "fat": 8,
      "confidence": 0.85
    }
  ]
}

Be accurate with nutritional estimates based on visible portion sizes. If unsure, provide conservative estimates."""

USER_INSTRUCTION = "Analyze this meal image and identify all food items with their nutritional information."

class OpenAIVisionService(NutritionVisionProvider):
    """Primary provider: one multimodal chat completion on an OpenAI-compatible API"""

    name = "openai_vision"

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None):
        self.model = os.getenv("PRIMARY_VISION_MODEL", "gpt-4o-mini")
        self.timeout = provider_timeout_seconds()

        if client is not None:
            self.client = client
        else:
            api_key = os.getenv("PRIMARY_VISION_API_KEY") or os.getenv("OPENAI_API_KEY")
            base_url = os.getenv("PRIMARY_VISION_BASE_URL") or None
            # One attempt per request
            self.client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=self.timeout,
                max_retries=0,
            ) if api_key else None

        if self.client is None:
            print("⚠️ PRIMARY_VISION_API_KEY / OPENAI_API_KEY not set - primary meal vision disabled")
        else:
            print(f"✅ OpenAI vision service initialized (model={self.model})")

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def analyze(self, image_base64: str) -> AnalysisOutcome:
        if self.client is None:
            return AnalysisFailure(reason="Primary vision provider not configured", provider=self.name)

        try:
            print(f"🔍 Primary vision request ({self.model}, {len(image_base64)} b64 chars)")

            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": MEAL_VISION_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:image/jpeg;base64,{image_base64}"},
                            },
                            {"type": "text", "text": USER_INSTRUCTION},
                        ],
                    },
                ],
                temperature=0.3,
                max_tokens=1024,
                timeout=self.timeout,
            )

        except openai.RateLimitError as e:
            print(f"⚠️ Primary vision provider rate limited: {e}")
            return AnalysisRateLimited(reason="Primary vision provider quota exhausted", provider=self.name)
        except openai.APITimeoutError:
            print(f"❌ Primary vision provider timed out after {self.timeout}s")
            return AnalysisFailure(reason="Primary vision provider timed out", provider=self.name)
        except openai.APIStatusError as e:
            print(f"❌ Primary vision provider returned HTTP {e.status_code}")
            return AnalysisFailure(reason=f"Primary vision provider HTTP {e.status_code}", provider=self.name)
        except openai.APIError as e:
            print(f"❌ Primary vision provider error: {e}")
            return AnalysisFailure(reason="Primary vision provider unreachable", provider=self.name)

        content = self._message_content(response)
        if not content:
            return AnalysisFailure(reason="No response from primary vision provider", provider=self.name)

        parsed = parse_provider_json(content)
        if not parsed.ok:
            print(f"❌ Could not parse primary vision response: {parsed.error}")
            return AnalysisFailure(reason=parsed.error, provider=self.name)

        if not parsed.foods:
            return AnalysisFailure(reason="Primary vision provider detected no foods", provider=self.name)

        print(f"✅ Primary vision detected {len(parsed.foods)} food item(s)")
        return AnalysisSuccess(items=parsed.foods, provider=self.name)

    def _message_content(self, response) -> Optional[str]:
        """Pull choices[0].message.content without trusting the shape"""
        choices = getattr(response, "choices", None)
        if not choices:
            return None
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if not isinstance(content, str):
            return None
        return content.strip() or None

# Global instance
openai_vision_service = None

def get_openai_vision_service() -> OpenAIVisionService:
    """Get the global primary vision service instance"""
    global openai_vision_service
    if openai_vision_service is None:
        openai_vision_service = OpenAIVisionService()
    return openai_vision_service

def init_openai_vision_service():
    """Initialize the global primary vision service"""
    global openai_vision_service
    openai_vision_service = OpenAIVisionService()
    return openai_vision_service
