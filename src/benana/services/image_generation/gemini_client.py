"""Gemini image generation client with retry and error classification."""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from benana.core.config import Settings
from benana.models.generation_request import (
    FAST_MODELS,
    GenerationRequest,
    ModelName,
    Resolution,
)
from benana.services.exceptions import GeminiHttpError, NoImageReturnedError

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 0.8
VALIDATE_TIMEOUT_SECONDS = 15.0
GENERATE_TIMEOUT_SECONDS = 120.0
DEFAULT_RESPONSE_MODALITIES = ["IMAGE", "TEXT"]


@dataclass(frozen=True)
class GeminiImagePart:
    mime_type: str
    data_base64: str


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class GenerationResult:
    images: list[GeminiImagePart]
    model_text: Optional[str]
    token_usage: Optional[TokenUsage]
    attempts: int


@dataclass(frozen=True)
class ApiKeyValidationResult:
    valid: bool
    message: str


def normalize_resolution_for_model(
    model: ModelName, resolution: Optional[Resolution]
) -> Optional[str]:
    """Fast model tiers only render 1K; other tiers keep the requested size."""
    if resolution is None:
        return None
    if model in FAST_MODELS:
        return Resolution.R1K.value
    return resolution.value


def build_gemini_payload(request: GenerationRequest) -> dict[str, Any]:
    """Translate a request into the ``generateContent`` JSON body."""
    parts: list[dict[str, Any]] = [{"text": request.prompt.strip()}]
    for reference in request.reference_images:
        parts.append(
            {"inlineData": {"mimeType": reference.mime_type, "data": reference.data_base64}}
        )

    generation_config: dict[str, Any] = {
        "responseModalities": (
            [modality.value for modality in request.response_modalities]
            if request.response_modalities
            else list(DEFAULT_RESPONSE_MODALITIES)
        )
    }

    image_config: dict[str, str] = {}
    if request.aspect_ratio is not None:
        image_config["aspectRatio"] = request.aspect_ratio.value
    image_size = normalize_resolution_for_model(request.model, request.resolution)
    if image_size:
        image_config["imageSize"] = image_size
    if image_config:
        generation_config["imageConfig"] = image_config

    payload: dict[str, Any] = {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": generation_config,
    }

    system_prompt = (request.system_prompt or "").strip()
    if system_prompt:
        payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

    if request.use_google_search:
        payload["tools"] = [{"googleSearch": {}}]

    return payload


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_candidate_parts(body: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = body.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    content = _as_dict(_as_dict(candidates[0]).get("content"))
    parts = content.get("parts")
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def _extract_inline_data(part: dict[str, Any]) -> Optional[GeminiImagePart]:
    inline = _as_dict(part.get("inlineData") or part.get("inline_data"))
    data = inline.get("data")
    if not isinstance(data, str) or not data.strip():
        return None
    mime_type = inline.get("mimeType") or inline.get("mime_type")
    if not isinstance(mime_type, str):
        mime_type = "image/png"
    return GeminiImagePart(mime_type=mime_type, data_base64=data)


def _extract_token_usage(body: dict[str, Any]) -> Optional[TokenUsage]:
    usage = body.get("usageMetadata") or body.get("usage_metadata")
    if not isinstance(usage, dict):
        return None

    def _number(*keys: str) -> int:
        for key in keys:
            value = usage.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return int(value)
        return 0

    return TokenUsage(
        input_tokens=_number("promptTokenCount", "prompt_token_count"),
        output_tokens=_number("candidatesTokenCount", "candidates_token_count"),
    )


def parse_generation_response(
    body: dict[str, Any],
) -> tuple[list[GeminiImagePart], Optional[str], Optional[TokenUsage]]:
    """Extract images, accompanying text and token usage from a response body.

    Raises:
        NoImageReturnedError: If the first candidate carries no image part
    """
    images: list[GeminiImagePart] = []
    text_parts: list[str] = []
    for part in _first_candidate_parts(body):
        image = _extract_inline_data(part)
        if image is not None:
            images.append(image)
        text = part.get("text")
        if isinstance(text, str) and text.strip():
            text_parts.append(text.strip())

    if not images:
        raise NoImageReturnedError("Gemini returned no image for this request")

    model_text = "\n\n".join(text_parts) if text_parts else None
    return images, model_text, _extract_token_usage(body)


def _read_error_message(response: httpx.Response) -> str:
    fallback = f"Gemini API request failed with {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return fallback
    message = _as_dict(_as_dict(body).get("error")).get("message")
    return message if isinstance(message, str) and message else fallback


class GeminiClient:
    """Client for the Gemini ``generateContent`` endpoint.

    Holds no state between calls. ``transport`` lets tests substitute an
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        retry_base_delay: float = RETRY_BASE_DELAY_SECONDS,
        validate_timeout: float = VALIDATE_TIMEOUT_SECONDS,
        generate_timeout: float = GENERATE_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_base_delay = retry_base_delay
        self.validate_timeout = validate_timeout
        self.generate_timeout = generate_timeout
        self.max_retries = max_retries
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "GeminiClient":
        return cls(
            base_url=settings.gemini_api_base_url,
            retry_base_delay=settings.gemini_retry_base_delay_seconds,
            validate_timeout=settings.gemini_validate_timeout_seconds,
            generate_timeout=settings.gemini_generate_timeout_seconds,
            transport=transport,
        )

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def validate_api_key(self, api_key: str) -> ApiKeyValidationResult:
        """Probe the model list endpoint with the key.

        Never raises; any failure is reported as an invalid result.
        """
        if not api_key.strip():
            return ApiKeyValidationResult(valid=False, message="API key must not be empty.")

        try:
            async with self._client(self.validate_timeout) as client:
                response = await client.get(f"{self.base_url}/models", params={"key": api_key})
        except httpx.TimeoutException:
            return ApiKeyValidationResult(
                valid=False,
                message=f"Validation timed out after {round(self.validate_timeout)} seconds.",
            )
        except httpx.HTTPError as e:
            return ApiKeyValidationResult(valid=False, message=f"API key could not be checked: {e}")

        if response.is_success:
            return ApiKeyValidationResult(valid=True, message="API key is valid.")
        return ApiKeyValidationResult(valid=False, message=_read_error_message(response))

    async def generate(self, request: GenerationRequest, api_key: str) -> GenerationResult:
        """Generate an image, retrying transient failures.

        Attempt ``n`` (n >= 2) starts ``retry_base_delay * 2 ** (n - 2)`` seconds after
        attempt ``n - 1`` failed.

        Raises:
            GeminiHttpError: Non-retryable status, or retries exhausted
            NoImageReturnedError: The response had no image part
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                images, model_text, token_usage = await self._generate_once(request, api_key)
                if attempts > 1:
                    logger.info("gemini.request.recovered", model=request.model.value, attempts=attempts)
                return GenerationResult(
                    images=images,
                    model_text=model_text,
                    token_usage=token_usage,
                    attempts=attempts,
                )
            except GeminiHttpError as e:
                if not e.retryable or attempts >= self.max_retries:
                    logger.warning(
                        "gemini.request.failed",
                        model=request.model.value,
                        status=e.status,
                        attempts=attempts,
                        error=str(e),
                    )
                    raise

                delay = self.retry_base_delay * 2 ** (attempts - 1)
                logger.info(
                    "gemini.request.retry",
                    model=request.model.value,
                    status=e.status,
                    attempt=attempts,
                    delay_seconds=delay,
                )
                await asyncio.sleep(delay)

    async def _generate_once(
        self, request: GenerationRequest, api_key: str
    ) -> tuple[list[GeminiImagePart], Optional[str], Optional[TokenUsage]]:
        endpoint = f"{self.base_url}/models/{request.model.value}:generateContent"
        payload = build_gemini_payload(request)

        try:
            async with self._client(self.generate_timeout) as client:
                response = await client.post(endpoint, params={"key": api_key}, json=payload)
        except httpx.TimeoutException as e:
            raise GeminiHttpError(
                f"Gemini API request timed out after {round(self.generate_timeout)} seconds.", 504
            ) from e
        except httpx.TransportError as e:
            # Connection-level failures classify like an unavailable service
            raise GeminiHttpError(f"Network error: {e}", 503) from e

        if not response.is_success:
            raise GeminiHttpError(_read_error_message(response), response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise GeminiHttpError("Gemini API returned invalid JSON", 502) from e

        return parse_generation_response(_as_dict(body))
