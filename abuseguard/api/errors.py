"""Global error handlers mapping guard failures onto JSON responses with the request id."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from abuseguard.domain.guard.errors import GuardError, Internal, ResourceExhausted
from abuseguard.obs import logging as obs_logging
from abuseguard.obs.middleware import REQUEST_ID_ATTR

logger = logging.getLogger("abuseguard.api.errors")


def get_request_id(request: Request, default: str = "unknown") -> str:
	rid = getattr(request.state, REQUEST_ID_ATTR, None) or obs_logging.current_request_id()
	return rid or default


def guard_error_response(request: Request, exc: GuardError) -> JSONResponse:
	payload = exc.to_payload()
	payload["request_id"] = get_request_id(request)
	headers = {}
	if isinstance(exc, ResourceExhausted):
		headers["Retry-After"] = str(exc.retry_after_seconds)
	return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(GuardError)
	async def guard_exc_handler(request: Request, exc: GuardError):  # type: ignore[override]
		if isinstance(exc, Internal):
			logger.error("guard_internal_error", extra={"reason": exc.reason, "path": request.url.path})
		return guard_error_response(request, exc)

	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		payload = {"detail": exc.detail, "request_id": get_request_id(request)}
		return JSONResponse(status_code=exc.status_code, content=payload)

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		payload = {
			"code": "invalid_argument",
			"detail": "validation_error",
			"errors": jsonable_encoder(exc.errors()),
			"request_id": get_request_id(request),
		}
		return JSONResponse(status_code=422, content=payload)

	@app.exception_handler(Exception)
	async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
		logger.error("unhandled_exception", extra={"path": request.url.path}, exc_info=exc)
		return guard_error_response(request, Internal("unhandled"))
