"""
Error type and FastAPI handlers shared by every router.

Every failure leaves the app as
``{"success": false, "error": {"code", "message", "details"?}, "meta"?}``.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """An error that maps directly onto an HTTP status and error code"""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Any = None,
        meta: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        self.meta = meta
        self.headers = headers or {}

    def to_body(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        body: Dict[str, Any] = {"success": False, "error": error}
        if self.meta is not None:
            body["meta"] = self.meta
        return body


def validation_issues(exc: Union[ValidationError, RequestValidationError]) -> List[Dict[str, str]]:
    """Flatten pydantic errors into ``[{path, message}]``."""
    return [
        {
            "path": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


def invalid_params(exc: Union[ValidationError, RequestValidationError]) -> GatewayError:
    return GatewayError(
        status.HTTP_400_BAD_REQUEST,
        "INVALID_PARAMS",
        "Request parameters failed validation",
        details=validation_issues(exc),
    )


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_body(), headers=exc.headers
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    error = invalid_params(exc)
    return JSONResponse(status_code=error.status_code, content=error.to_body())


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unexpected error handling {request.method} {request.url.path}")
    error = GatewayError(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred",
        details=str(exc) or exc.__class__.__name__,
    )
    return JSONResponse(status_code=error.status_code, content=error.to_body())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
