from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .camera import CaptureFactory, FrameSource
from .camera_capture import open_camera_capture
from .capture import CaptureStateMachine
from .config import CAMERA_INDEX, REGISTRY_BACKEND, REGISTRY_PATH
from .enrollment import EnrollmentService
from .exceptions import InvalidTransition, StorageError, ValidationError
from .logger import setup_logger
from .recognition import RecognitionSimulator
from .registry import UserRegistry
from .schemas import (
    CaptureStateResponse,
    DeleteUserResponse,
    DetectionResultResponse,
    EnrollUserBody,
    UserResponse,
)
from .session import AccessSession
from .storage import create_storage

logger = setup_logger("face_doorlock.web_app")


def create_web_app(
    camera_index: Optional[int] = None,
    registry: Optional[UserRegistry] = None,
    recognizer: Optional[RecognitionSimulator] = None,
    capture_factory: CaptureFactory = open_camera_capture,
    auto_tick: bool = True,
    auto_recognize: bool = True,
) -> FastAPI:
    index = CAMERA_INDEX if camera_index is None else int(camera_index)
    if registry is None:
        registry = UserRegistry(create_storage(REGISTRY_BACKEND, REGISTRY_PATH))
    if recognizer is None:
        recognizer = RecognitionSimulator()

    access = AccessSession(
        machine=CaptureStateMachine(FrameSource(index, capture_factory=capture_factory), auto_tick=auto_tick),
        registry=registry,
        recognizer=recognizer,
        auto_recognize=auto_recognize,
    )
    # Shares the device index with the access session; only one may stream.
    enrollment = EnrollmentService(
        registry=registry,
        machine=CaptureStateMachine(FrameSource(index, capture_factory=capture_factory), auto_tick=False),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        access.reset()
        enrollment.reset_form()
        logger.info("Camera sessions released on shutdown")

    app = FastAPI(title="Face Door Lock", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.access = access
    app.state.enrollment = enrollment
    app.state.registry = registry

    @app.exception_handler(StorageError)
    async def storage_failed(request: Request, exc: StorageError):
        logger.error("Registry storage failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "User registry is unavailable."})

    def _camera_failed(notice: Optional[str]) -> HTTPException:
        return HTTPException(status_code=503, detail=notice or "Camera unavailable.")

    @app.get("/api/health")
    def health() -> dict:
        return {
            "ok": True,
            "service": "face-doorlock",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/capture/state", response_model=CaptureStateResponse)
    async def capture_state():
        return await access.snapshot()

    @app.post("/api/capture/start", response_model=CaptureStateResponse)
    async def capture_start():
        try:
            opened = await access.start_camera()
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if not opened:
            raise _camera_failed(access.machine.notice)
        return await access.snapshot()

    @app.post("/api/capture/stop", response_model=CaptureStateResponse)
    async def capture_stop():
        access.stop_camera()
        return await access.snapshot()

    @app.post("/api/capture/smart", response_model=CaptureStateResponse)
    async def capture_smart():
        try:
            await access.smart_capture()
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return await access.snapshot()

    @app.post("/api/capture/now", response_model=CaptureStateResponse)
    async def capture_now():
        try:
            await access.capture_now()
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return await access.snapshot()

    @app.post("/api/capture/recognize", response_model=DetectionResultResponse)
    async def capture_recognize():
        try:
            result = await access.identify()
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if result is None:
            raise HTTPException(status_code=409, detail="Capture session was reset before recognition finished.")
        return result.to_dict()

    @app.post("/api/capture/reset", response_model=CaptureStateResponse)
    async def capture_reset():
        access.reset()
        return await access.snapshot()

    @app.get("/api/users", response_model=list[UserResponse])
    async def list_users():
        return await asyncio.to_thread(enrollment.list_users)

    @app.post("/api/users", response_model=UserResponse, status_code=201)
    async def create_user(payload: EnrollUserBody):
        try:
            return await enrollment.save(
                name=payload.name,
                employee_id=payload.employee_id,
                image_data=payload.image_data,
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.delete("/api/users/{user_id}", response_model=DeleteUserResponse)
    async def delete_user(user_id: str):
        removed = await asyncio.to_thread(enrollment.delete_user, user_id)
        return {"ok": True, "removed": removed}

    @app.get("/api/enroll/state", response_model=CaptureStateResponse)
    async def enroll_state():
        return await enrollment.snapshot()

    @app.post("/api/enroll/start", response_model=CaptureStateResponse)
    async def enroll_start():
        try:
            opened = await enrollment.start_camera()
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if not opened:
            raise _camera_failed(enrollment.machine.notice)
        return await enrollment.snapshot()

    @app.post("/api/enroll/capture", response_model=CaptureStateResponse)
    async def enroll_capture():
        try:
            enrollment.capture()
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return await enrollment.snapshot()

    @app.post("/api/enroll/stop", response_model=CaptureStateResponse)
    async def enroll_stop():
        enrollment.stop_camera()
        return await enrollment.snapshot()

    @app.post("/api/enroll/reset", response_model=CaptureStateResponse)
    async def enroll_reset():
        enrollment.reset_form()
        return await enrollment.snapshot()

    return app
