"""FastAPI application for the virtual queue service.

Routes are a thin adapter: they read the request, call one
``QueueService`` operation and turn its ``ServiceResult`` into a JSON
response with the matching status code.  All components are built once by
``context.build_context`` during startup (or handed in by tests) and kept on
``app.state.context``.
"""

from __future__ import annotations

import json
import logging
import traceback
from contextlib import asynccontextmanager
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from config import Settings, configure_logging
from context import QueueContext, build_context
from results import ResultStatus, ServiceResult
from schemas import JoinManyRequest, JoinRequest
from services import QueueService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_context(request: Request) -> QueueContext:
    return request.app.state.context


def get_service(request: Request) -> QueueService:
    return request.app.state.context.service


def respond(result: ServiceResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=jsonable_encoder(result.to_message()))


@router.get("/health")
def health(service: QueueService = Depends(get_service)) -> JSONResponse:
    return respond(service.health())


@router.post("/queues/{location_id}/join")
def join_queue(location_id: str, body: JoinRequest, service: QueueService = Depends(get_service)) -> JSONResponse:
    return respond(service.join(location_id, body.fullName, phone_number=body.phoneNumber, user_id=body.userId))


@router.post("/queues/{location_id}/join-many")
def join_queue_many(
    location_id: str, body: JoinManyRequest, service: QueueService = Depends(get_service)
) -> JSONResponse:
    return respond(service.join_many(location_id, [user.to_participant() for user in body.users]))


@router.get("/queues/{location_id}/position")
def get_position(
    location_id: str,
    phone_number: Optional[str] = Query(None, alias="phoneNumber"),
    service: QueueService = Depends(get_service),
) -> JSONResponse:
    return respond(service.get_position(phone_number, location_id))


@router.get("/queues/{location_id}/status")
def get_status(location_id: str, service: QueueService = Depends(get_service)) -> JSONResponse:
    return respond(service.get_status(location_id))


@router.post("/queues/{location_id}/next")
def serve_next(location_id: str, service: QueueService = Depends(get_service)) -> JSONResponse:
    return respond(service.serve_next(location_id))


@router.post("/queues/{location_id}/leave")
def leave_queue(
    location_id: str,
    phone_number: Optional[str] = Query(None, alias="phoneNumber"),
    service: QueueService = Depends(get_service),
) -> JSONResponse:
    return respond(service.leave(phone_number, location_id))


@router.get("/queues/{location_id}/list")
def get_queue_list(
    location_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: QueueService = Depends(get_service),
) -> JSONResponse:
    return respond(service.list(location_id, limit))


@router.post("/queues/{location_id}/empty")
def empty_queue(location_id: str, service: QueueService = Depends(get_service)) -> JSONResponse:
    return respond(service.empty(location_id))


@router.get("/queues/{location_id}/dashboard")
def dashboard(location_id: str, service: QueueService = Depends(get_service)) -> JSONResponse:
    return respond(service.dashboard(location_id))


@router.get("/me/queues")
def my_queues(
    phone_number: Optional[str] = Query(None, alias="phoneNumber"),
    service: QueueService = Depends(get_service),
) -> JSONResponse:
    return respond(service.active_queues(phone_number))


# ===== AUTOPILOT =====

@router.post("/queues/{location_id}/autopilot")
def start_autopilot(location_id: str, context: QueueContext = Depends(get_context)) -> JSONResponse:
    if context.locations.get(location_id) is None:
        return respond(ServiceResult.failure("Location not found", ResultStatus.not_found))
    started = context.autopilot.start(location_id)
    message = "Autopilot started" if started else "Autopilot already running"
    return respond(ServiceResult.ok(message, {"active": True, "changed": started}))


@router.delete("/queues/{location_id}/autopilot")
def stop_autopilot(location_id: str, context: QueueContext = Depends(get_context)) -> JSONResponse:
    stopped = context.autopilot.stop(location_id)
    message = "Autopilot stopped" if stopped else "Autopilot not running"
    return respond(ServiceResult.ok(message, {"active": False, "changed": stopped}))


@router.get("/queues/{location_id}/autopilot")
def autopilot_status(location_id: str, context: QueueContext = Depends(get_context)) -> JSONResponse:
    active = context.autopilot.is_active(location_id)
    return respond(ServiceResult.ok("Autopilot status retrieved", {"active": active}))


# ===== REALTIME =====

@router.get("/queues/{location_id}/events")
def queue_events(location_id: str, context: QueueContext = Depends(get_context)) -> StreamingResponse:
    """Server-Sent Events stream of everything emitted for one location."""

    def event_stream() -> Iterator[str]:
        for data in context.fanout.listen(location_id):
            if data is None:
                yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
            else:
                yield f"data: {data}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


def create_app(context: Optional[QueueContext] = None) -> FastAPI:
    """Build the app.  Without ``context`` one is built from the environment at startup."""
    settings = context.settings if context is not None else Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        if owned:
            configure_logging(settings.log_level)
        app.state.context = build_context(settings) if owned else context
        if owned:
            app.state.context.start()
        logger.info("Queue service started")
        try:
            yield
        finally:
            if owned:
                app.state.context.close()

    app = FastAPI(title="Virtual Queue", lifespan=lifespan)
    if context is not None:
        app.state.context = context
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url}: {exc}")
        logger.error(traceback.format_exc())
        return respond(ServiceResult.failure("Internal server error", ResultStatus.internal))

    app.include_router(router)
    return app


def run() -> None:
    import os

    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


app = create_app()


if __name__ == "__main__":
    run()
