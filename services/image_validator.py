# services/image_validator.py
import re
from typing import Any, Optional
from pydantic import BaseModel

MAX_IMAGE_BYTES = 5 * 1024 * 1024  # 5MB decoded

NO_IMAGE_MESSAGE = "No image provided"
TOO_LARGE_MESSAGE = "Image too large. Maximum size is 5MB."
INVALID_FORMAT_MESSAGE = "Invalid image format"

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")

class ImageValidationResult(BaseModel):
    image_base64: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

def strip_data_url(raw: str) -> str:
    """Drop a data:<mime>;base64, prefix if the client sent a data URL"""
    if raw.startswith("data:") and "base64," in raw:
        return raw.split("base64,", 1)[1]
    return raw

def decoded_size(image_base64: str) -> int:
    """Byte length the base64 string decodes to, without decoding it"""
    padding = len(image_base64) - len(image_base64.rstrip("="))
    return (len(image_base64) * 3) // 4 - padding

def validate_image(raw: Any) -> ImageValidationResult:
    """
    Payload hygiene only - the image content itself is never decoded here.
    Order matters: size is checked before anything goes near a provider.
    """
    if not isinstance(raw, str) or not raw.strip():
        return ImageValidationResult(error=NO_IMAGE_MESSAGE)

    image_base64 = strip_data_url(raw.strip())
    if not image_base64:
        return ImageValidationResult(error=NO_IMAGE_MESSAGE)

    if decoded_size(image_base64) > MAX_IMAGE_BYTES:
        return ImageValidationResult(error=TOO_LARGE_MESSAGE)

    if len(image_base64) % 4 or not _BASE64_RE.match(image_base64):
        return ImageValidationResult(error=INVALID_FORMAT_MESSAGE)

    return ImageValidationResult(image_base64=image_base64)

def make_image_ref(image_base64: str, max_length: int = 100) -> str:
    """Truncated reference stored with a scan instead of the full payload"""
    if len(image_base64) <= max_length:
        return image_base64
    return image_base64[:max_length] + "..."
