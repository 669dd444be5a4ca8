# main.py: FastAPI app exposing agent threads, approvals and workflow runs.

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import threadloop as tl
from app.routes.agent import agent_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    tl.common.setup()
    app = FastAPI(title="threadloop", version=tl.__version__)

    @app.exception_handler(tl.common.NotFoundError)
    async def handle_not_found(request: Request, exc: tl.common.NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(tl.common.ConfigurationError)
    async def handle_configuration_error(request: Request, exc: tl.common.ConfigurationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(tl.common.ModelProviderError)
    async def handle_model_provider_error(request: Request, exc: tl.common.ModelProviderError):
        logger.error(f"Model provider error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503 if exc.retryable else 502,
            content={"detail": str(exc), "retryable": exc.retryable},
        )

    app.include_router(agent_router)
    return app


app = create_app()
