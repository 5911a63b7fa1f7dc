import asyncio
import json
import logging
from typing import Any, Optional

import httpx
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from models import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

API_ERROR = "api_error"
TIMEOUT_ERROR = "timeout_error"
PROXY_ERROR = "proxy_error"
INVALID_REQUEST_ERROR = "invalid_request_error"

TIMEOUT_MESSAGE = "Request timed out. Try a shorter prompt or smaller max_tokens."
BACKEND_ERROR_MESSAGE = "Backend API error"
INTERNAL_ERROR_MESSAGE = "Internal server error"


class NormalizedError(BaseModel):
    """The single client-visible shape of every failure."""

    model_config = ConfigDict(frozen=True)

    http_status: int
    message: str
    kind: str

    def to_body(self) -> dict:
        detail = ErrorDetail(message=self.message, type=self.kind, code=self.http_status)
        return ErrorResponse(error=detail).model_dump()

    def to_response(self) -> JSONResponse:
        return JSONResponse(content=self.to_body(), status_code=self.http_status)


class GatewayError(Exception):
    """Base class for failures the gateway raises itself."""

    kind = PROXY_ERROR
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidRequest(GatewayError):
    """The inbound request is malformed or cannot be routed."""

    kind = INVALID_REQUEST_ERROR
    status_code = 400


class InvalidBackendResponse(GatewayError):
    """The backend answered 2xx but with a payload we cannot normalize."""

    kind = API_ERROR
    status_code = 500


class BackendStatusError(GatewayError):
    """The backend answered with a non-2xx status."""

    kind = API_ERROR

    def __init__(self, status_code: int, body: Any = None):
        self.body = body
        super().__init__(
            extract_backend_message(body) or BACKEND_ERROR_MESSAGE, status_code
        )


def extract_backend_message(body: Any) -> Optional[str]:
    """
    Pulls a human readable message out of a backend error body.
    Accepts the OpenAI shape ({"error": {"message": ...}}) as well as
    {"error": "..."}, {"message": ...} and {"detail": ...}. Bytes or text
    bodies are decoded as JSON first.
    """
    if isinstance(body, (bytes, bytearray)):
        body = body.decode(errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            return None
    if not isinstance(body, dict):
        return None

    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
        return error["message"]
    if isinstance(error, str) and error:
        return error
    for key in ("message", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _classify(failure: BaseException) -> NormalizedError:
    if isinstance(failure, (httpx.TimeoutException, asyncio.TimeoutError)):
        return NormalizedError(http_status=504, message=TIMEOUT_MESSAGE, kind=TIMEOUT_ERROR)

    if isinstance(failure, httpx.HTTPStatusError):
        response = failure.response
        try:
            body = response.json()
        except ValueError:
            body = response.text
        return NormalizedError(
            http_status=response.status_code,
            message=extract_backend_message(body) or BACKEND_ERROR_MESSAGE,
            kind=API_ERROR,
        )

    if isinstance(failure, GatewayError):
        return NormalizedError(
            http_status=failure.status_code, message=failure.message, kind=failure.kind
        )

    return NormalizedError(
        http_status=500, message=str(failure) or INTERNAL_ERROR_MESSAGE, kind=PROXY_ERROR
    )


def classify_failure(failure: BaseException) -> NormalizedError:
    """
    Maps any failure of a gateway request to a NormalizedError.

    Order: timeouts (504), backend non-2xx statuses (echoed, api_error),
    the gateway's own errors (their kind and status), anything else (500,
    proxy_error). Never raises.
    """
    try:
        error = _classify(failure)
    except Exception:
        logger.exception("Failed to classify error, falling back to proxy_error")
        error = NormalizedError(http_status=500, message=INTERNAL_ERROR_MESSAGE, kind=PROXY_ERROR)

    logger.error(f"[{error.kind}] {error.http_status}: {error.message}")
    return error
