import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from potoken_service.coordinator import RefreshOutcome, UpdateCoordinator
from potoken_service.services.history import AttemptHistory

logger = logging.getLogger(__name__)

NOT_READY_MESSAGE = "Token has not yet been generated, try again later."
UPDATE_ACCEPTED_MESSAGE = "Update request accepted, new token will be generated soon."
UPDATE_PENDING_MESSAGE = "Update has already been requested, new token will be generated soon."

# Routing is by path only
ROUTE_METHODS = ["GET", "HEAD", "POST"]


def create_app(
    coordinator: UpdateCoordinator,
    update_interval: Optional[float] = None,
    history: Optional[AttemptHistory] = None,
) -> FastAPI:
    """
    Build the read-only token API around a coordinator.

    When ``update_interval`` is given the lifespan starts the periodic schedule
    and, on shutdown, stops it and waits for the running attempt.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if history is not None:
            await history.init()
        if update_interval is not None:
            coordinator.start_periodic_schedule(update_interval)
        try:
            yield
        finally:
            logger.info("Shutting down...")
            coordinator.stop()
            await coordinator.drain()
            if history is not None:
                await history.close()

    app = FastAPI(
        title="PoToken Generator",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.coordinator = coordinator

    @app.exception_handler(StarletteHTTPException)
    async def plain_text_errors(request, exc: StarletteHTTPException):
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @app.api_route("/", methods=ROUTE_METHODS)
    async def index():
        return RedirectResponse("/token", status_code=302)

    @app.api_route("/token", methods=ROUTE_METHODS)
    async def get_token():
        record = coordinator.read()
        if record is None:
            return PlainTextResponse(NOT_READY_MESSAGE, status_code=503)
        return Response(content=record.to_json(), media_type="application/json")

    @app.api_route("/update", methods=ROUTE_METHODS)
    async def request_update():
        if coordinator.request_refresh() is RefreshOutcome.ACCEPTED:
            return PlainTextResponse(UPDATE_ACCEPTED_MESSAGE)
        return PlainTextResponse(UPDATE_PENDING_MESSAGE)

    return app
