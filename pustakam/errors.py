"""Exception hierarchy shared by generation, storage and export."""


class PustakamError(Exception):
    """Base error for everything raised by this package.

    Attributes:
        code: Stable machine-readable error code.
        recoverable: Whether retrying the same operation can succeed.
        user_message: Message suitable for showing to the user.
    """

    code = "PUSTAKAM_ERROR"
    recoverable = True

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        recoverable: bool | None = None,
        user_message: str | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        self.user_message = user_message or message


class ConfigurationError(PustakamError):
    """Missing credentials, unknown provider or similar setup problems."""

    code = "CONFIGURATION_ERROR"
    recoverable = False


class ProviderError(PustakamError):
    """A text-generation provider returned an error."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        provider: str,
        *,
        status_code: int | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.provider = provider
        self.status_code = status_code


class AuthenticationError(ProviderError):
    code = "INVALID_API_KEY"
    recoverable = False

    def __init__(self, provider: str, status_code: int | None = 401) -> None:
        super().__init__(
            f"Invalid API key for {provider}",
            provider,
            status_code=status_code,
            user_message=(
                f"Your {provider} API key is invalid or expired. "
                "Please update it in the settings."
            ),
        )


class RateLimitError(ProviderError):
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        provider: str,
        retry_after: float | None = None,
        status_code: int | None = 429,
    ) -> None:
        super().__init__(
            f"Rate limit exceeded for {provider}",
            provider,
            status_code=status_code,
            user_message=(
                f"You've reached the API rate limit for {provider}. "
                "Wait a little or switch to a different model."
            ),
        )
        self.retry_after = retry_after


class NetworkError(ProviderError):
    code = "NETWORK_ERROR"

    def __init__(self, provider: str, message: str = "Network connection failed") -> None:
        super().__init__(
            message,
            provider,
            user_message="Unable to reach the provider. Check your connection and try again.",
        )


class MalformedResponseError(ProviderError):
    code = "MALFORMED_RESPONSE"


class RoadmapParseError(PustakamError):
    """The roadmap response could not be turned into a usable plan."""

    code = "ROADMAP_PARSE_ERROR"


class GenerationError(PustakamError):
    """A generation stage failed for good."""

    def __init__(
        self,
        message: str,
        phase: str,
        *,
        module_title: str | None = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("code", f"GENERATION_{phase.upper()}_FAILED")
        super().__init__(message, **kwargs)
        self.phase = phase  # "roadmap", "module", "assembly"
        self.module_title = module_title


class GenerationInProgressError(PustakamError):
    code = "GENERATION_IN_PROGRESS"
    recoverable = False


class InvalidTransitionError(PustakamError):
    code = "INVALID_TRANSITION"
    recoverable = False


class StorageError(PustakamError):
    code = "STORAGE_ERROR"


class StorageQuotaError(StorageError):
    code = "STORAGE_QUOTA_ERROR"
    recoverable = False


class ExportError(PustakamError):
    code = "EXPORT_ERROR"


class FontLoadError(ExportError):
    code = "FONT_LOAD_ERROR"
    recoverable = False


class ExportInProgressError(ExportError):
    code = "EXPORT_IN_PROGRESS"


class BackupFormatError(PustakamError):
    code = "BACKUP_FORMAT_ERROR"
    recoverable = False


# Provider error messages that usually clear up on their own
_TRANSIENT_MARKERS = ("timeout", "overloaded", "unavailable", "internal error", "bad gateway")


def is_retryable(error: BaseException) -> bool:
    """Decide whether an operation that raised ``error`` should be retried.

    Args:
        error: The exception raised by a provider call or parser.

    Returns:
        True for transient provider failures and roadmap parse errors.
    """
    if isinstance(error, (AuthenticationError, ConfigurationError)):
        return False
    if isinstance(error, (RateLimitError, NetworkError, MalformedResponseError, RoadmapParseError)):
        return True
    if isinstance(error, ProviderError):
        if error.status_code is not None and error.status_code >= 500:
            return True
        message = str(error).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)
    if isinstance(error, PustakamError):
        return error.recoverable
    return False
