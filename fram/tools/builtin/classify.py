"""Map provider client exceptions onto ToolError types."""
import httpx
import openai

from ..errors import ErrorType, ToolError


def classify_http_error(exc: Exception, service: str) -> ToolError:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        details = {"service": service, "httpStatus": status}
        if status in (401, 403):
            return ToolError(ErrorType.AUTH, f"{service} rejected our credentials ({status})", details=details)
        if status == 429:
            return ToolError(ErrorType.RATE_LIMIT, f"{service} rate limit reached", details=details)
        if status == 503:
            return ToolError(ErrorType.TRANSIENT, f"{service} unavailable ({status}). Please try again later.",
                             retryable=False, details=details)
        if status >= 500:
            return ToolError(ErrorType.TRANSIENT, f"{service} error ({status})", details=details)
        return ToolError(ErrorType.PERMANENT, f"{service} request failed ({status})", details=details)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ToolError(ErrorType.TRANSIENT, f"{service} unreachable: {exc}", details={"service": service})
    return ToolError(ErrorType.TRANSIENT, f"{service} failed: {exc}", details={"service": service})


def classify_openai_error(exc: Exception, service: str = "openai") -> ToolError:
    details = {"service": service}
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ToolError(ErrorType.AUTH, f"{service} authentication failed", details=details)
    if isinstance(exc, openai.RateLimitError):
        return ToolError(ErrorType.RATE_LIMIT, f"{service} rate limit or quota reached", details=details)
    if isinstance(exc, openai.APIConnectionError):
        return ToolError(ErrorType.TRANSIENT, f"{service} unreachable: {exc}", details=details)
    if isinstance(exc, openai.APIStatusError):
        details["httpStatus"] = exc.status_code
        if exc.status_code >= 500:
            return ToolError(ErrorType.TRANSIENT, f"{service} error ({exc.status_code})", details=details)
        return ToolError(ErrorType.PERMANENT, f"{service} request failed ({exc.status_code})", details=details)
    return ToolError(ErrorType.TRANSIENT, f"{service} failed: {exc}", details=details)
