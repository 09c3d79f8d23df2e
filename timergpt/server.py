"""HTTP surface for the timer tools."""
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from . import __version__
from .config import Settings, settings as default_settings
from .timer import (
    CapacityExceededError,
    InvalidTransitionError,
    PersistenceError,
    TimerEngine,
    TimerError,
    TimerFileStorage,
    TimerNotFoundError,
    TimerToolset,
    TimerValidationError,
)

logger = logger.bind(module="server")

ERROR_STATUS = {
    CapacityExceededError: 409,
    InvalidTransitionError: 409,
    TimerNotFoundError: 404,
    TimerValidationError: 422,
    PersistenceError: 500,
}


def _status_for(error: TimerError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400


def create_app(config: Settings | None = None) -> FastAPI:
    """Build the FastAPI app.

    The timer snapshot is loaded from ``config.storage_path`` on startup and
    every change is written back to it.
    """
    config = config or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        storage = TimerFileStorage(config.storage_path)
        engine = TimerEngine(
            max_concurrent=config.max_concurrent,
            initial_timers=await storage.load(),
            on_change=storage.save,
        )
        app.state.toolset = TimerToolset(engine)
        logger.info(f"Timer service ready, snapshot at {storage.file_path}")
        yield
        try:
            await engine.wait_for_persistence()
        except PersistenceError as e:
            logger.error(f"Final timer write failed: {e}")

    app = FastAPI(
        title="TimerGPT",
        description="Countdown timers exposed as tool calls",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TimerError)
    async def timer_error_handler(request: Request, exc: TimerError):
        status = _status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        content = {"error": exc.code, "message": str(exc)}
        if exc.completed:
            content["completed"] = [t.to_dict() for t in exc.completed]
        return JSONResponse(status_code=status, content=content)

    def get_toolset(request: Request) -> TimerToolset:
        return request.app.state.toolset

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/timers")
    async def list_timers(toolset: TimerToolset = Depends(get_toolset)):
        result = await toolset.list_timers()
        return result.to_dict()

    @app.post("/timers")
    async def start_timer(
        payload: dict[str, Any] = Body(...),
        toolset: TimerToolset = Depends(get_toolset),
    ):
        result = await toolset.start_timer(payload)
        return result.to_dict()

    @app.post("/timers/{timer_id}/pause")
    async def pause_timer(timer_id: str, toolset: TimerToolset = Depends(get_toolset)):
        result = await toolset.pause_timer(timer_id)
        return result.to_dict()

    @app.post("/timers/{timer_id}/resume")
    async def resume_timer(timer_id: str, toolset: TimerToolset = Depends(get_toolset)):
        result = await toolset.resume_timer(timer_id)
        return result.to_dict()

    @app.post("/timers/{timer_id}/cancel")
    async def cancel_timer(timer_id: str, toolset: TimerToolset = Depends(get_toolset)):
        result = await toolset.cancel_timer(timer_id)
        return result.to_dict()

    @app.post("/timers/{timer_id}/extend")
    async def extend_timer(
        timer_id: str,
        payload: dict[str, Any] = Body(default_factory=dict),
        toolset: TimerToolset = Depends(get_toolset),
    ):
        result = await toolset.extend_timer({**payload, "id": timer_id})
        return result.to_dict()

    return app
