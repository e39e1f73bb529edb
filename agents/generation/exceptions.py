"""
Exception hierarchy for lesson generation.

Provides specific exceptions for different failure scenarios
to enable proper error handling and recovery.
"""

import json
import random
from typing import Optional, Dict, Any


RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
TRANSIENT_MESSAGE_MARKERS = ('UNAVAILABLE', 'HIGH DEMAND', 'TRY AGAIN LATER', 'OVERLOADED')
CREDENTIAL_STATUS_CODES = {401, 403}


class GenerationError(Exception):
    """Base exception for all generation errors"""

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context = context or {}

    def __str__(self):
        parts = [super().__str__()]
        if self.cause:
            parts.append(f" (caused by: {type(self.cause).__name__}: {str(self.cause)})")
        if self.context:
            parts.append(f" Context: {self.context}")
        return "".join(parts)


# === Quota ===

class QuotaExceededError(GenerationError):
    """Daily allowance for a usage kind is used up"""

    def __init__(self, kind: str, limit: int, **kwargs):
        super().__init__(f"Daily {kind} limit of {limit} reached", **kwargs)
        self.kind = kind
        self.limit = limit
        self.context.update({'kind': kind, 'limit': limit})


# === Provider (LLM / image model) ===

class ProviderError(GenerationError):
    """Generative provider call failed"""

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
        if status is not None:
            self.context.setdefault('status', status)

    @property
    def is_rate_limit(self) -> bool:
        return self.status == 429


class TransientProviderError(ProviderError):
    """Overload, rate limit or server error; worth retrying"""
    pass


class TerminalProviderError(ProviderError):
    """Credentials, permissions, billing or malformed request; never retried"""

    @property
    def aborts_all_models(self) -> bool:
        # Bad credentials fail the same way for every model.
        return self.status in CREDENTIAL_STATUS_CODES


class ProviderResponseError(TerminalProviderError):
    """Provider answered but the payload is unusable (empty, not JSON, no image)"""
    pass


class ContentBlockedError(ProviderError):
    """Provider refused to produce output (safety filter)"""

    def __init__(self, reason: str, **kwargs):
        super().__init__(f"Image generation was blocked. Reason: {reason}", **kwargs)
        self.reason = reason


# === Media exceptions ===

class MediaProcessingError(GenerationError):
    """Media processing failed"""
    pass


class AssetResolutionError(MediaProcessingError):
    """No usable bytes could be produced for an image candidate"""
    pass


class ImageFormatError(AssetResolutionError):
    """Unsupported or invalid image format"""
    pass


class ImageSizeError(AssetResolutionError):
    """Image exceeds size limits"""
    pass


# === Persistence exceptions ===

class StorageAccessError(GenerationError):
    """Local usage storage could not be read or written"""
    pass


# === Configuration exceptions ===

class ConfigurationError(GenerationError):
    """Configuration error"""
    pass


class InvalidConfigError(ConfigurationError):
    """Invalid configuration value"""
    pass


class MissingConfigError(ConfigurationError):
    """Required configuration missing"""
    pass


# === Recovery helpers ===

def _extract_status_and_message(error: Exception):
    """Pull an HTTP-ish status and the most useful message out of an SDK error."""
    status = None
    for attr in ('status_code', 'code', 'status'):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            status = value
            break

    message = getattr(error, 'message', None) or str(error) or type(error).__name__

    # Some SDKs put the REST error body in the message.
    try:
        parsed = json.loads(message)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, dict) and isinstance(parsed.get('error'), dict):
        body = parsed['error']
        if status is None and isinstance(body.get('code'), int):
            status = body['code']
        if isinstance(body.get('message'), str) and body['message'].strip():
            message = body['message']
        if status is None and body.get('status') == 'UNAVAILABLE':
            status = 503

    if status is None and str(getattr(error, 'status', '')).upper() == 'UNAVAILABLE':
        status = 503

    return status, message


def classify_provider_error(error: Exception) -> ProviderError:
    """Map any provider/SDK exception onto the provider taxonomy"""
    if isinstance(error, ProviderError):
        return error

    status, message = _extract_status_and_message(error)
    upper = message.upper()
    transient = (
        status in RETRYABLE_STATUS_CODES
        or any(marker in upper for marker in TRANSIENT_MESSAGE_MARKERS)
        or isinstance(error, (TimeoutError, ConnectionError))
    )
    if transient:
        return TransientProviderError(message, status=status, cause=error)
    return TerminalProviderError(message, status=status if status is not None else 500, cause=error)


def is_retryable(error: Exception) -> bool:
    """Check if error is retryable"""
    return isinstance(classify_provider_error(error), TransientProviderError)


def get_retry_delay(attempt: int, base_delay: float = 0.8, max_delay: float = 3.2,
                    max_jitter: float = 0.35) -> float:
    """Exponential backoff with jitter: 0.8s, 1.6s, 3.2s (+ up to 0.35s)"""
    delay = min(max_delay, base_delay * (2 ** max(0, attempt - 1)))
    return delay + random.uniform(0, max_jitter)


def describe_error(error: Exception) -> str:
    """User-facing message derived from the error category, never raw provider text"""
    if isinstance(error, QuotaExceededError):
        if error.kind == 'images':
            return f"You have reached today's limit of {error.limit} images. The limit resets tomorrow."
        return f"You have reached today's limit of {error.limit} generations. The limit resets tomorrow."
    if isinstance(error, ContentBlockedError):
        return "The image was blocked by the provider's safety filter. Try rewording the image prompt."
    if isinstance(error, TransientProviderError):
        if error.is_rate_limit:
            return "The AI service quota is temporarily exhausted. Please try again in a few minutes."
        return "The AI service is currently under heavy load. The app retried automatically; please try again in about 1 minute."
    if isinstance(error, TerminalProviderError):
        if error.status in CREDENTIAL_STATUS_CODES:
            return "An API key has a permission or billing issue. Please contact the administrator."
        if isinstance(error, ProviderResponseError):
            return "The AI service returned an unusable response. Please try again."
        return "The AI service rejected the request. Please contact the administrator if this keeps happening."
    if isinstance(error, MissingConfigError):
        return "The application's API key is missing from its configuration. Please contact the administrator."
    if isinstance(error, AssetResolutionError):
        return "An image could not be loaded for this slide."
    return "An unexpected error occurred. Please try again."
