"""
Error taxonomy and classification for remote generation failures.

Every failed remote call ends up here:
- Transports raise RemoteServiceError with a structured status code
- classify() maps any raw failure to an ErrorCategory
- GenerationError / CredentialRepairError are what callers finally see

classify() is a pure function and never raises.
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Actionable category of a failed remote call."""
    AUTH_INVALID = "auth_invalid"
    QUOTA_EXHAUSTED = "quota_exhausted"
    BAD_REQUEST = "bad_request"  # includes safety blocks
    SERVER_UNAVAILABLE = "server_unavailable"
    NETWORK = "network"
    VEO_AUTH_FAILURE = "veo_auth_failure"
    UNKNOWN = "unknown"

    @property
    def is_credential_failure(self) -> bool:
        return self in (ErrorCategory.AUTH_INVALID, ErrorCategory.VEO_AUTH_FAILURE)


# Sentinel code for "the request never reached the service"
NETWORK_CODE = "NET"

AUTH_CODES = ("401", "403")

_CODE_CATEGORIES = {
    "429": ErrorCategory.QUOTA_EXHAUSTED,
    "400": ErrorCategory.BAD_REQUEST,
    "500": ErrorCategory.SERVER_UNAVAILABLE,
    "502": ErrorCategory.SERVER_UNAVAILABLE,
    "503": ErrorCategory.SERVER_UNAVAILABLE,
    "504": ErrorCategory.SERVER_UNAVAILABLE,
    NETWORK_CODE: ErrorCategory.NETWORK,
}

# Ordered keyword inference used when no numeric code is present
_KEYWORD_CODES = (
    (("permission denied", "api key not valid"), "403"),
    (("resource exhausted",), "429"),
    (("bad request",), "400"),
    (("server error", "503"), "500"),
    (("failed to fetch",), NETWORK_CODE),
)

# Words that mark a 401/403 as a video-token problem rather than an API key problem
_VEO_HINTS = ("veo", "video", "auth token", "unauthorized")

# Phrases that name a video auth failure outright, with or without a code
_VEO_AUTH_PHRASES = ("veo authentication failed", "veo auth token is required")

_STATUS_CODE_PATTERN = re.compile(r"\[(\d{3})\]|\b(\d{3})\b")

_SDK_PREFIXES = ("[GoogleGenerativeAI Error]: ",)

SUGGESTIONS = {
    ErrorCategory.BAD_REQUEST: (
        "Your prompt or image may have been blocked by safety filters. "
        "Please try rephrasing your request or using a different image."
    ),
    ErrorCategory.QUOTA_EXHAUSTED: (
        "You've sent too many requests in a short time. "
        "Please wait a minute before trying again."
    ),
    ErrorCategory.SERVER_UNAVAILABLE: (
        "There was a temporary issue on the service's side. "
        "Please try again in a few moments."
    ),
    ErrorCategory.NETWORK: (
        "The service could not be reached. "
        "Please check your connection and try again."
    ),
}


class RemoteServiceError(Exception):
    """
    Raised at the transport boundary when a remote call fails.

    Carries the status code (and, where the transport already knows it,
    the category) so classification does not depend on the message text.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        category: Optional[ErrorCategory] = None,
        service: Optional[str] = None,
    ):
        self.code = code
        self.category = category
        self.service = service
        super().__init__(message)


class ApiKeyMissingError(Exception):
    """Raised when a call needs an API key and the session has none."""

    def __init__(self):
        super().__init__(
            "API Key not found. Please set a key in Settings or claim a temporary one."
        )


class VeoTokenRequiredError(Exception):
    """Raised when a video job starts with an empty auth token set."""

    def __init__(self):
        super().__init__(
            "Veo auth token is required for video generation. "
            "Please refresh your auth tokens and try again."
        )


class VideoGenerationCancelled(Exception):
    """Raised when a video job is cancelled by its caller."""


class GenerationError(Exception):
    """
    User-facing error for a failed generation call.

    The original message is preserved on the first line; a remediation
    suggestion, if any, is appended after a blank line.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        code: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        self.category = category
        self.code = code
        self.suggestion = suggestion
        if suggestion:
            message = f"{message}\n\nSuggestion: {suggestion}"
        super().__init__(message)


class CredentialRepairError(GenerationError):
    """Raised for credential failures after an auto-repair has been requested."""

    def __init__(self, message: str, category: ErrorCategory, code: Optional[str] = None):
        super().__init__(message, category=category, code=code)


@dataclass(frozen=True)
class ClassifiedError:
    """Result of classifying one failed call."""
    category: ErrorCategory
    message: str
    code: Optional[str] = None


def _stringify(raw: Any) -> str:
    if isinstance(raw, BaseException):
        text = str(raw)
        return text if text else type(raw).__name__
    return str(raw)


def _code_from_json(message: str) -> Optional[str]:
    """Find the first embedded JSON object carrying error.code."""
    decoder = json.JSONDecoder()
    start = message.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(message, start)
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            error = obj.get("error")
            if isinstance(error, dict) and error.get("code") not in (None, ""):
                return str(error["code"])
        start = message.find("{", start + 1)
    return None


def extract_status_code(message: str) -> Optional[str]:
    """
    Extract a status code from unstructured error text.

    Order: embedded JSON error.code, then a bracketed or standalone
    3-digit token, then keyword inference.
    """
    code = _code_from_json(message)
    if code:
        return code

    match = _STATUS_CODE_PATTERN.search(message)
    if match:
        return match.group(1) or match.group(2)

    lower = message.lower()
    for keywords, inferred in _KEYWORD_CODES:
        if any(keyword in lower for keyword in keywords):
            return inferred
    return None


def _category_for(code: Optional[str], lower: str, service: Optional[str]) -> ErrorCategory:
    is_auth_code = code in AUTH_CODES

    if (is_auth_code and (service == "video" or any(h in lower for h in _VEO_HINTS))) or any(
        phrase in lower for phrase in _VEO_AUTH_PHRASES
    ):
        return ErrorCategory.VEO_AUTH_FAILURE

    if is_auth_code or (code == "400" and "api key not valid" in lower):
        return ErrorCategory.AUTH_INVALID

    return _CODE_CATEGORIES.get(code, ErrorCategory.UNKNOWN)


def _classify(raw: Any) -> ClassifiedError:
    message = _stringify(raw)
    code = None
    service = None

    if isinstance(raw, RemoteServiceError):
        if raw.category is not None:
            return ClassifiedError(raw.category, message, raw.code)
        code = raw.code
        service = raw.service

    if code is None:
        code = extract_status_code(message)

    return ClassifiedError(_category_for(code, message.lower(), service), message, code)


def classify(raw: Any) -> ClassifiedError:
    """Map a raw failure (exception, text or response) to a ClassifiedError."""
    try:
        return _classify(raw)
    except Exception:
        try:
            message = _stringify(raw)
        except Exception:
            message = repr(raw)
        return ClassifiedError(ErrorCategory.UNKNOWN, message)


def suggestion_for(classified: ClassifiedError) -> Optional[str]:
    """Short remediation hint, unless the message already carries one."""
    lower = classified.message.lower()
    if "please ensure" in lower or "please try" in lower:
        return None
    return SUGGESTIONS.get(classified.category)


def short_error_message(error: Any) -> str:
    """First line of an error, unwrapping JSON payloads and SDK prefixes."""
    message = _stringify(error)
    try:
        obj = json.loads(message)
    except ValueError:
        obj = None
    if isinstance(obj, dict):
        inner = obj.get("error")
        if isinstance(inner, dict) and inner.get("message"):
            message = str(inner["message"])
        elif obj.get("message"):
            message = str(obj["message"])

    first_line = message.split("\n")[0]
    for prefix in _SDK_PREFIXES:
        if first_line.startswith(prefix):
            return first_line[len(prefix):]
    return first_line
