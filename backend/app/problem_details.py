"""RFC 7807 Problem Details helpers."""
from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .domain_errors import DomainError

logger = logging.getLogger(__name__)

PROBLEM_TYPE_BASE = "https://api.task-manager.local/problems"


def build_problem_details_response(exc: DomainError, *, instance: str | None = None) -> JSONResponse:
    """Render a DomainError as application/problem+json with its stable code."""
    try:
        title = HTTPStatus(exc.http_status).phrase
    except ValueError:
        title = "Domain Error"

    payload: dict[str, object] = {
        "type": f"{PROBLEM_TYPE_BASE}/{exc.code.lower().replace('_', '-')}",
        "title": title,
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
    }
    if instance:
        payload["instance"] = instance
    if exc.details is not None:
        payload["details"] = exc.details

    return JSONResponse(
        status_code=exc.http_status,
        content=payload,
        media_type="application/problem+json",
    )


def install_problem_handlers(app: FastAPI) -> None:
    """Register the DomainError handler on an application."""

    @app.exception_handler(DomainError)
    async def _domain_error_handler(request: Request, exc: DomainError):
        if exc.http_status >= 500:
            logger.error("Domain failure on %s: %s (%s)", request.url.path, exc.message, exc.code)
        return build_problem_details_response(exc, instance=request.url.path)
