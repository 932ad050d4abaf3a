from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crewboard.errors import CrewboardError

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY: dict[str, int] = {
    "validation": 422,
    "not_found": 404,
    "conflict": 409,
    "state": 409,
    "authorization": 403,
}


def error_response(exc: CrewboardError) -> JSONResponse:
    status_code = STATUS_BY_CATEGORY.get(exc.category, 400)
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CrewboardError)
    async def _handle_crewboard_error(request: Request, exc: CrewboardError) -> JSONResponse:
        logger.debug("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
        return error_response(exc)
