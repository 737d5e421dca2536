from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    type: str
    message: str
    provider_code: str | None = None
    retryable: bool = False
    http_status: int | None = None


class MediaGenError(RuntimeError):
    def __init__(self, info: ErrorInfo):
        super().__init__(info.message)
        self.info = info

    def with_prefix(self, prefix: str) -> "MediaGenError":
        """Return a copy whose message is prefixed with `prefix: `."""
        return MediaGenError(replace(self.info, message=f"{prefix}: {self.info.message}"))


RATE_LIMIT_HINT_ADD_KEY = "Add an API key in settings for higher limits."
RATE_LIMIT_HINT_RETRY = "Try again in a moment."


def auth_error(message: str, provider_code: str | None = None, http_status: int | None = None) -> MediaGenError:
    return MediaGenError(
        ErrorInfo(type="AuthError", message=message, provider_code=provider_code, http_status=http_status)
    )


def rate_limit_error(
    message: str,
    provider_code: str | None = None,
    *,
    hint: str | None = None,
    http_status: int | None = 429,
) -> MediaGenError:
    if hint:
        message = f"Rate limit exceeded. {hint}"
    return MediaGenError(
        ErrorInfo(
            type="RateLimitError",
            message=message,
            provider_code=provider_code,
            retryable=True,
            http_status=http_status,
        )
    )


def with_rate_limit_hint(err: MediaGenError, hint: str) -> MediaGenError:
    if err.info.type != "RateLimitError":
        return err
    return rate_limit_error(err.info.message, err.info.provider_code, hint=hint, http_status=err.info.http_status)


def invalid_request_error(message: str, provider_code: str | None = None) -> MediaGenError:
    return MediaGenError(
        ErrorInfo(type="InvalidRequestError", message=message, provider_code=provider_code)
    )


def validation_error(
    message: str, provider_code: str | None = None, http_status: int | None = None
) -> MediaGenError:
    return MediaGenError(
        ErrorInfo(type="ValidationError", message=message, provider_code=provider_code, http_status=http_status)
    )


def schema_unavailable_error(message: str) -> MediaGenError:
    return MediaGenError(ErrorInfo(type="SchemaUnavailableError", message=message, retryable=True))


def upload_too_large_error(message: str) -> MediaGenError:
    return MediaGenError(ErrorInfo(type="UploadTooLargeError", message=message))


def ssrf_error(message: str) -> MediaGenError:
    return MediaGenError(ErrorInfo(type="SSRFError", message=message))


def timeout_error(message: str, http_status: int | None = None) -> MediaGenError:
    return MediaGenError(ErrorInfo(type="TimeoutError", message=message, http_status=http_status))


def no_output_error(message: str) -> MediaGenError:
    return MediaGenError(ErrorInfo(type="NoOutputError", message=message))


def transport_error(
    message: str, provider_code: str | None = None, http_status: int | None = None
) -> MediaGenError:
    return MediaGenError(
        ErrorInfo(type="TransportError", message=message, provider_code=provider_code, http_status=http_status)
    )


def provider_error(message: str, provider_code: str | None = None) -> MediaGenError:
    return MediaGenError(ErrorInfo(type="ProviderError", message=message, provider_code=provider_code))
