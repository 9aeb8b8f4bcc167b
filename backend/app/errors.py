"""Map engine exceptions onto HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chainsync.services.errors import (
    ConfigurationError,
    ConflictError,
    FatalWorkerError,
    PriceSourceError,
    UnknownOwnerError,
)

logger: logging.Logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[Exception], int] = {
    ConflictError: 409,
    ConfigurationError: 422,
    UnknownOwnerError: 404,
    FatalWorkerError: 502,
    PriceSourceError: 502,
}


def _error_body(exc: Exception) -> dict[str, str]:
    return {"detail": str(exc), "type": type(exc).__name__}


def register_error_handlers(app: FastAPI) -> None:
    for exc_type, status_code in STATUS_BY_ERROR.items():

        async def _on_known(request: Request, exc: Exception, status_code: int = status_code) -> JSONResponse:
            logger.info("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
            return JSONResponse(status_code=status_code, content=_error_body(exc))

        app.add_exception_handler(exc_type, _on_known)

    @app.exception_handler(Exception)
    async def _on_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(status_code=500, content=_error_body(exc))
