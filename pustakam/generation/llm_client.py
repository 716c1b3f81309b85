"""Uniform text-generation calls across the supported providers.

Every provider is reached with a single non-streaming HTTPS request. Three
wire formats cover the catalog: OpenAI-compatible chat completions,
Google ``generateContent`` and Cohere v2 chat. Failures are mapped onto the
``pustakam.errors`` taxonomy so callers can decide about retries without
knowing which provider answered.
"""

import logging
from dataclasses import dataclass

import httpx

from pustakam.config import GenerationConfig
from pustakam.errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedResponseError,
    NetworkError,
    ProviderError,
    RateLimitError,
)
from pustakam.generation.rate_limiter import RateLimiter
from pustakam.models.settings import PROVIDER_MODELS, provider_display_name

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = {429, 503, 529}
AUTH_STATUSES = {401, 403}

# Short answers containing one of these are treated as refusals
REFUSAL_PHRASES = (
    "i cannot fulfill this request",
    "i am unable to provide",
    "i cannot generate",
    "as an ai language model",
    "policy against generating",
    "offensive or inappropriate",
    "explicit or harmful",
    "cannot comply",
)
REFUSAL_MAX_CHARS = 300

_RATE_LIMIT_MARKERS = ("rate limit", "quota", "too many requests", "resource exhausted")


@dataclass(frozen=True)
class ProviderSpec:
    """How to reach one provider."""

    id: str
    wire: str  # "openai", "google", "cohere"
    endpoint: str

    @property
    def name(self) -> str:
        return provider_display_name(self.id)


PROVIDERS: dict[str, ProviderSpec] = {
    "cerebras": ProviderSpec("cerebras", "openai", "https://api.cerebras.ai/v1/chat/completions"),
    "mistral": ProviderSpec("mistral", "openai", "https://api.mistral.ai/v1/chat/completions"),
    "groq": ProviderSpec("groq", "openai", "https://api.groq.com/openai/v1/chat/completions"),
    "xai": ProviderSpec("xai", "openai", "https://api.x.ai/v1/chat/completions"),
    "openrouter": ProviderSpec("openrouter", "openai", "https://openrouter.ai/api/v1/chat/completions"),
    "longcat": ProviderSpec(
        "longcat", "openai", "https://api.longcat.chat/openai/v1/chat/completions"
    ),
    "google": ProviderSpec(
        "google",
        "google",
        "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
    ),
    "cohere": ProviderSpec("cohere", "cohere", "https://api.cohere.com/v2/chat"),
}


@dataclass
class GenerationResult:
    """Text returned by a provider plus where it came from."""

    text: str
    provider: str
    model: str

    @property
    def provider_name(self) -> str:
        return provider_display_name(self.provider)


def is_safety_refusal(text: str) -> bool:
    """Detect a short refusal answer instead of real content."""
    lowered = text.lower()
    return len(text) < REFUSAL_MAX_CHARS and any(p in lowered for p in REFUSAL_PHRASES)


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    """Pull the provider's error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return f"HTTP {response.status_code}"


class LLMClient:
    """Sends one prompt to one provider and returns the generated text.

    Args:
        config: Timeout and sampling settings.
        http_client: Optional pre-built ``httpx.Client`` (tests pass one
            wired to ``httpx.MockTransport``).
        rate_limiter: Optional client-side throttle shared across calls.
    """

    def __init__(
        self,
        config: GenerationConfig | None = None,
        http_client: httpx.Client | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.config = config or GenerationConfig()
        self._http = http_client or httpx.Client(timeout=self.config.request_timeout_seconds)
        self._owns_http = http_client is None
        self.rate_limiter = rate_limiter

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _build_request(self, spec: ProviderSpec, model: str, api_key: str, prompt: str) -> tuple[str, dict, dict, dict]:
        """Return (url, params, headers, json body) for ``spec``'s wire format."""
        if spec.wire == "google":
            body = {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": self.config.temperature,
                    "topK": 40,
                    "topP": 0.95,
                    "maxOutputTokens": self.config.max_output_tokens,
                },
            }
            return spec.endpoint.format(model=model), {"key": api_key}, {}, body

        headers = {"Authorization": f"Bearer {api_key}"}
        if spec.id == "openrouter":
            headers["X-Title"] = "Pustakam"
        body = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
        }
        if spec.wire == "openai":
            body["max_tokens"] = self.config.max_output_tokens
        return spec.endpoint, {}, headers, body

    @staticmethod
    def _extract_text(spec: ProviderSpec, data: dict) -> str | None:
        try:
            if spec.wire == "google":
                parts = data["candidates"][0]["content"]["parts"]
                return "".join(part.get("text", "") for part in parts)
            if spec.wire == "cohere":
                return data["message"]["content"][0]["text"]
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None

    def generate(self, provider: str, model: str, api_key: str | None, prompt: str) -> GenerationResult:
        """Generate text for ``prompt``.

        Args:
            provider: Provider id from the catalog.
            model: Model id offered by that provider.
            api_key: Credential for the provider.
            prompt: Full prompt text.

        Returns:
            The generated text with provider metadata.

        Raises:
            ConfigurationError: Unknown provider/model or missing key.
            AuthenticationError: The provider rejected the key.
            RateLimitError: Throttled locally or by the provider.
            NetworkError: The request did not complete.
            MalformedResponseError: No usable text in the response.
            ProviderError: Any other non-success answer.
        """
        spec = PROVIDERS.get(provider)
        if spec is None:
            raise ConfigurationError(f"Unknown provider: {provider}")
        if model not in PROVIDER_MODELS.get(provider, []):
            raise ConfigurationError(f"Model {model} is not offered by {provider}")
        if not api_key or not api_key.strip():
            raise ConfigurationError(
                f"No API key configured for {provider}",
                user_message=f"Add a {spec.name} API key in the settings first.",
            )

        if self.rate_limiter is not None and not self.rate_limiter.try_acquire(provider):
            wait = self.rate_limiter.seconds_until_available(provider)
            logger.warning("Local rate limit for %s, retry in %.0fs", provider, wait)
            raise RateLimitError(provider, retry_after=wait, status_code=None)

        url, params, headers, body = self._build_request(spec, model, api_key.strip(), prompt)
        logger.debug("Calling %s (%s), prompt length %d", provider, model, len(prompt))
        try:
            response = self._http.post(
                url,
                params=params,
                headers=headers,
                json=body,
                timeout=self.config.request_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(
                provider, f"Request to {provider} timed out after {self.config.request_timeout_seconds:.0f}s"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(provider, f"Network error calling {provider}: {exc}") from exc

        self._raise_for_status(provider, response)

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{spec.name} returned invalid JSON", provider) from exc

        text = self._extract_text(spec, data) if isinstance(data, dict) else None
        if text is None:
            raise MalformedResponseError(f"Invalid response structure from {spec.name}", provider)
        if not text.strip():
            raise MalformedResponseError(f"{spec.name} returned an empty response", provider)
        if is_safety_refusal(text):
            raise MalformedResponseError(
                f"{spec.name} refused to generate this content",
                provider,
                user_message=(
                    "The model refused to generate this content. "
                    "Try the stellar mode or a different model."
                ),
            )

        if self.rate_limiter is not None:
            self.rate_limiter.clear_cooldown(provider)
        return GenerationResult(text=text, provider=provider, model=model)

    def _raise_for_status(self, provider: str, response: httpx.Response) -> None:
        status = response.status_code
        if response.is_success:
            return
        if status in AUTH_STATUSES:
            raise AuthenticationError(provider, status_code=status)

        message = _error_message(response)
        if status in RATE_LIMIT_STATUSES or any(m in message.lower() for m in _RATE_LIMIT_MARKERS):
            retry_after = _parse_retry_after(response)
            if self.rate_limiter is not None:
                self.rate_limiter.record_rate_limit(provider, retry_after)
            raise RateLimitError(provider, retry_after=retry_after, status_code=status)

        logger.warning("%s answered HTTP %d: %s", provider, status, message)
        raise ProviderError(f"{provider} API error ({status}): {message}", provider, status_code=status)
