"""Error taxonomy for the orchestration provider, and the classifier that maps
arbitrary upstream and transport failures into it."""

import json
import re
from enum import StrEnum
from typing import Any, Iterator, Mapping

import httpx

from aicore import LOGGER

log = LOGGER.getChild("errors")

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})

AUTH_HINT = (
    "Verify that the deployment URL, resource group and auth token are set correctly "
    "(AICORE_DEPLOYMENT_URL, AICORE_RESOURCE_GROUP, AICORE_AUTH_TOKEN)."
)


class ErrorCategory(StrEnum):
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not-found"
    RATE_LIMITED = "rate-limited"
    VALIDATION = "validation"
    NETWORK = "network"
    CONTENT_FILTER = "content-filter"
    STREAM_PROTOCOL = "stream-protocol"
    UNKNOWN = "unknown"


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600


class ProviderError(Exception):
    """Base exception for all provider errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        status_code: int | None = None,
        request_body_values: Mapping[str, Any] | None = None,
        response_body: str | None = None,
        response_headers: Mapping[str, str] | None = None,
        url: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        self.request_body_values = request_body_values
        self.response_body = response_body
        self.response_headers = response_headers
        self.url = url
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class AuthenticationError(ProviderError):
    """Credentials were rejected or are missing."""

    category = ErrorCategory.AUTHENTICATION


class NoSuchModelError(ProviderError):
    """The model or deployment could not be found."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, message: str, *, model_id: str = "unknown", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.model_id = model_id


class APICallError(ProviderError):
    """A call to the orchestration service failed."""


class RateLimitError(APICallError):
    category = ErrorCategory.RATE_LIMITED


class ConfigurationError(APICallError):
    category = ErrorCategory.VALIDATION


class NetworkError(APICallError):
    category = ErrorCategory.NETWORK


class ContentFilterError(APICallError):
    category = ErrorCategory.CONTENT_FILTER


class StreamProtocolError(APICallError):
    category = ErrorCategory.STREAM_PROTOCOL


class UnsupportedFunctionalityError(ProviderError):
    """The prompt contains something that cannot be sent to the service."""

    category = ErrorCategory.VALIDATION

    def __init__(self, functionality: str, message: str | None = None) -> None:
        super().__init__(message or f"'{functionality}' functionality not supported.")
        self.functionality = functionality


class RequestAbortedError(ProviderError):
    """The request was aborted by the caller before the service responded."""


def _api_error_for_status(status_code: int) -> type[APICallError]:
    if status_code == 429:
        return RateLimitError
    if status_code in (400, 422):
        return ConfigurationError
    return APICallError


def _status_from_code(code: Any) -> int:
    if isinstance(code, float) and code.is_integer():
        code = int(code)
    if isinstance(code, bool) or not isinstance(code, int):
        return 500
    if 100 <= code < 600:
        return code
    return 500


def _is_error_entry(entry: Any) -> bool:
    return isinstance(entry, dict) and isinstance(entry.get("message"), str)


def is_error_envelope(value: Any) -> bool:
    """`{"error": {...}}` or `{"error": [{...}, ...]}` (non-empty) where every entry carries a message."""
    if not isinstance(value, dict) or "error" not in value:
        return False
    inner = value["error"]
    if isinstance(inner, list):
        return bool(inner) and all(_is_error_entry(e) for e in inner)
    return _is_error_entry(inner)


_MODEL_ID_PATTERNS = [
    re.compile(r"deployment[:\s]+([a-zA-Z0-9_-]+)", re.IGNORECASE),
    re.compile(r"model[:\s]+([a-zA-Z0-9_-]+)", re.IGNORECASE),
    re.compile(r"resource[:\s]+([a-zA-Z0-9_-]+)", re.IGNORECASE),
]


def extract_model_identifier(message: str, location: str | None = None) -> str | None:
    for pattern in _MODEL_ID_PATTERNS:
        if m := pattern.search(message):
            return m.group(1)
    if location:
        if m := re.search(r"([a-zA-Z0-9_-]+)", location):
            return m.group(1)
    return None


def convert_sap_error(
    envelope: Mapping[str, Any],
    *,
    request_body: Mapping[str, Any] | None = None,
    response_headers: Mapping[str, str] | None = None,
    url: str | None = None,
    cause: BaseException | None = None,
) -> ProviderError:
    """
    Convert a structured orchestration error envelope into a provider error.

    When the envelope holds a list of errors, the first entry wins.
    """
    error = envelope["error"]
    if isinstance(error, list):
        error = error[0]
    message: str = error["message"]
    code = error.get("code")
    location: str | None = error.get("location")
    request_id: str | None = error.get("request_id")

    status_code = _status_from_code(code)
    response_body = json.dumps(
        {
            "error": {
                "code": code,
                "location": location,
                "message": message,
                "request_id": request_id,
            }
        }
    )

    enhanced = message
    if status_code in (401, 403):
        enhanced += "\n\nAuthentication failed. " + AUTH_HINT
        if request_id:
            enhanced += f"\nRequest ID: {request_id}"
        return AuthenticationError(
            enhanced,
            status_code=status_code,
            response_body=response_body,
            response_headers=response_headers,
            url=url,
            cause=cause,
        )

    if status_code == 404:
        enhanced += (
            "\n\nResource not found. The model or deployment may not exist "
            "in your SAP AI Core instance."
        )
        if request_id:
            enhanced += f"\nRequest ID: {request_id}"
        return NoSuchModelError(
            enhanced,
            model_id=extract_model_identifier(message, location) or "unknown",
            status_code=status_code,
            response_body=response_body,
            response_headers=response_headers,
            url=url,
            cause=cause,
        )

    if status_code == 429:
        enhanced += (
            "\n\nRate limit exceeded. Please try again later "
            "or contact your SAP administrator."
        )
    elif status_code >= 500:
        enhanced += (
            "\n\nSAP AI Core service error. This is typically a temporary issue."
        )
    elif location:
        enhanced += f"\n\nError location: {location}"
    if request_id:
        enhanced += f"\nRequest ID: {request_id}"

    cls = _api_error_for_status(status_code)
    return cls(
        enhanced,
        retryable=is_retryable_status(status_code),
        status_code=status_code,
        request_body_values=request_body,
        response_body=response_body,
        response_headers=response_headers,
        url=url,
        cause=cause,
    )


def _walk_cause_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its explicit causes, with cycle protection."""
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        yield cur
        nxt = cur.__cause__
        if nxt is None:
            attr = getattr(cur, "cause", None)
            nxt = attr if isinstance(attr, BaseException) else None
        cur = nxt


def root_cause(error: Any) -> Any:
    if not isinstance(error, BaseException):
        return error
    *_, last = _walk_cause_chain(error)
    return last


def extract_envelope_from_message(message: str) -> dict[str, Any] | None:
    """Find a JSON error envelope embedded in free text, e.g. an SSE error message."""
    m = re.search(r"\{[\s\S]*\}", message)
    if not m:
        return None
    try:
        parsed = json.loads(m.group(0))
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict) and "error" in parsed:
        return parsed
    if isinstance(parsed, dict) and "message" in parsed:
        return {"error": parsed}
    return None


def _envelope_of(error: Any) -> dict[str, Any] | None:
    if is_error_envelope(error):
        return error
    if not isinstance(error, BaseException):
        return None
    body = getattr(error, "body", None)
    if is_error_envelope(body):
        return body
    if isinstance(error, httpx.HTTPStatusError):
        try:
            data = error.response.json()
        except (json.JSONDecodeError, UnicodeDecodeError, httpx.ResponseNotRead):
            data = None
        if is_error_envelope(data):
            return data
    envelope = extract_envelope_from_message(str(error))
    if envelope is not None and is_error_envelope(envelope):
        return envelope
    return None


def _headers_of(error: Any) -> dict[str, str] | None:
    if not isinstance(error, BaseException):
        return None
    for e in _walk_cause_chain(error):
        if isinstance(e, httpx.HTTPStatusError):
            return dict(e.response.headers)
    return None


_AUTH_PATTERNS = (
    "authentication",
    "unauthorized",
    "aicore_service_key",
    "invalid credentials",
    "service credentials",
    "service binding",
)
_NETWORK_PATTERNS = ("econnrefused", "enotfound", "network", "timeout")
_DEPLOYMENT_PATTERNS = ("failed to resolve deployment", "no deployment matched")
_SSE_PATTERNS = (
    "iterating over",
    "parse message into json",
    "received from",
    "no body",
    "invalid sse payload",
)
_CONFIG_PATTERNS = (
    "prompt template or messages must be defined",
    "filtering parameters cannot be empty",
    "templating yaml string must be non-empty",
    "could not access response data",
    "could not parse json",
    "error parsing yaml",
    "yaml does not conform",
    "validation errors",
)
_TIMING_PATTERNS = (
    "response is required to process",
    "stream is still open",
    "data is not available yet",
)


def _classify_message(
    root: BaseException, common: dict[str, Any]
) -> ProviderError | None:
    original = str(root)
    msg = original.lower()

    if any(p in msg for p in _AUTH_PATTERNS):
        return AuthenticationError(
            f"SAP AI Core authentication failed: {original}\n\n{AUTH_HINT}",
            status_code=401,
            **common,
        )
    if isinstance(root, (httpx.TimeoutException, httpx.TransportError)) or any(
        p in msg for p in _NETWORK_PATTERNS
    ):
        return NetworkError(
            f"Network error connecting to SAP AI Core: {original}",
            retryable=True,
            status_code=503,
            **common,
        )
    if "could not resolve destination" in msg:
        return ConfigurationError(
            f"SAP AI Core destination error: {original}\n\n"
            "Check your destination configuration or deployment URL.",
            status_code=400,
            **common,
        )
    if any(p in msg for p in _DEPLOYMENT_PATTERNS):
        return NoSuchModelError(
            f"SAP AI Core deployment error: {original}\n\n"
            "Make sure you have a running orchestration deployment "
            "in your AI Core instance.",
            model_id=extract_model_identifier(original) or "unknown",
            status_code=404,
            **common,
        )
    if "filtered by the output filter" in msg:
        return ContentFilterError(
            f"Content was filtered: {original}\n\n"
            "The model's response was blocked by content safety filters. "
            "Try a different prompt.",
            status_code=400,
            **common,
        )
    if m := re.search(r"status code (\d+)", original, re.IGNORECASE):
        status_code = int(m.group(1))
        cls = _api_error_for_status(status_code)
        return cls(
            f"SAP AI Core request failed: {original}",
            retryable=is_retryable_status(status_code),
            status_code=status_code,
            **common,
        )
    if isinstance(root, httpx.HTTPStatusError):
        status_code = root.response.status_code
        cls = _api_error_for_status(status_code)
        return cls(
            f"SAP AI Core request failed: {original}",
            retryable=is_retryable_status(status_code),
            status_code=status_code,
            **common,
        )
    if "consumed stream" in msg:
        return StreamProtocolError(
            f"SAP AI Core stream consumption error: {original}",
            status_code=500,
            **common,
        )
    if any(p in msg for p in _SSE_PATTERNS):
        return StreamProtocolError(
            f"SAP AI Core streaming error: {original}",
            retryable=True,
            status_code=500,
            **common,
        )
    if any(p in msg for p in _CONFIG_PATTERNS):
        return ConfigurationError(
            f"SAP AI Core configuration error: {original}",
            status_code=400,
            **common,
        )
    if "buffer is not available as globals" in msg:
        return APICallError(
            f"SAP AI Core environment error: {original}",
            status_code=500,
            **common,
        )
    if "response stream is undefined" in msg:
        return StreamProtocolError(
            f"SAP AI Core response stream error: {original}",
            status_code=500,
            **common,
        )
    if any(p in msg for p in _TIMING_PATTERNS):
        return StreamProtocolError(
            f"SAP AI Core response processing error: {original}",
            retryable=True,
            status_code=500,
            **common,
        )
    if "failed to fetch the list of deployments" in msg:
        return NetworkError(
            f"SAP AI Core deployment retrieval error: {original}",
            retryable=True,
            status_code=503,
            **common,
        )
    if "received non-uint8array" in msg:
        return StreamProtocolError(
            f"SAP AI Core stream buffer error: {original}",
            status_code=500,
            **common,
        )
    return None


def convert_to_provider_error(
    error: Any,
    *,
    operation: str | None = None,
    request_body: Mapping[str, Any] | None = None,
    url: str | None = None,
    response_headers: Mapping[str, str] | None = None,
) -> ProviderError:
    """
    Classify any thrown value into the provider error taxonomy.

    The cause chain is unwrapped to its root first. Structured error envelopes
    (including JSON embedded in an error message) take priority over message
    heuristics. Anything unrecognised becomes a non-retryable 500.
    """
    if isinstance(error, ProviderError):
        return error

    root = root_cause(error)
    if response_headers is None:
        response_headers = _headers_of(error)
    cause = error if isinstance(error, BaseException) else None

    envelope = _envelope_of(root)
    if envelope is None and root is not error:
        envelope = _envelope_of(error)
    if envelope is not None:
        converted = convert_sap_error(
            envelope,
            request_body=request_body,
            response_headers=response_headers,
            url=url,
            cause=cause,
        )
        log.warning(f"Classified SAP AI Core error: {converted.category}")
        return converted

    common: dict[str, Any] = {
        "request_body_values": request_body,
        "response_headers": response_headers,
        "url": url,
        "cause": cause,
    }
    if isinstance(root, BaseException):
        converted = _classify_message(root, common)
        if converted is not None:
            log.warning(f"Classified SAP AI Core error: {converted.category}")
            return converted

    if isinstance(root, BaseException):
        message = str(root)
    elif isinstance(root, str):
        message = root
    else:
        message = "Unknown error occurred"
    full_message = (
        f"SAP AI Core {operation} failed: {message}"
        if operation
        else f"SAP AI Core error: {message}"
    )
    return APICallError(full_message, status_code=500, **common)


__all__ = [
    "ErrorCategory",
    "ProviderError",
    "AuthenticationError",
    "NoSuchModelError",
    "APICallError",
    "RateLimitError",
    "ConfigurationError",
    "NetworkError",
    "ContentFilterError",
    "StreamProtocolError",
    "UnsupportedFunctionalityError",
    "RequestAbortedError",
    "RETRYABLE_STATUS_CODES",
    "is_retryable_status",
    "is_error_envelope",
    "extract_model_identifier",
    "extract_envelope_from_message",
    "convert_sap_error",
    "convert_to_provider_error",
    "root_cause",
]
