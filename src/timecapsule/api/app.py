"""
HTTP API for capsule creation, unlock and status.

- POST /capsules               create a capsule (payload base64)
- POST /capsules/{id}/unlock   attempt an unlock as ``requester``
- GET  /capsules?recipient=|creator=  statuses of one identity's capsules
- GET  /capsules/{id}          state and remaining time

Domain errors are returned as ``{"error": CapsuleError.to_dict()}`` with a
status code chosen from the error code.
"""

from __future__ import annotations

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from timecapsule.core.orchestrator import UnlockOrchestrator
from timecapsule.protocol.enums import ConditionKind, ErrorCode
from timecapsule.protocol.errors import CapsuleError
from timecapsule.protocol.models import UnlockCondition

logger = logging.getLogger(__name__)

_STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.CAPSULE_NOT_FOUND: 404,
    ErrorCode.VERIFICATION_FAILED: 403,
    ErrorCode.NOT_YET_UNLOCKABLE: 425,
    ErrorCode.CONDITION_NOT_MET: 425,
    ErrorCode.STORAGE_UNAVAILABLE: 502,
    ErrorCode.CONTENT_NOT_RETRIEVABLE: 502,
    ErrorCode.LOCK_BACKEND_UNAVAILABLE: 503,
    ErrorCode.LEDGER_UNAVAILABLE: 503,
    ErrorCode.LEDGER_COMMIT_FAILED: 503,
    ErrorCode.INTEGRITY_VIOLATION: 409,
    ErrorCode.DECRYPTION_FAILED: 409,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.IMMUTABLE_FIELD: 409,
    ErrorCode.INVALID_INPUT: 422,
}


def status_for(error: CapsuleError) -> int:
    return _STATUS_BY_CODE.get(error.code, 500)


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------

class ConditionBody(BaseModel):
    kind: ConditionKind
    target: int = Field(ge=0)
    tolerance: int = Field(default=0, ge=0)


class CreateCapsuleBody(BaseModel):
    creator: str = Field(min_length=1)
    recipient: str = Field(min_length=1)
    title: str = ""
    content: str = Field(description="Payload, base64 encoded.")
    contentType: str = "application/octet-stream"
    condition: ConditionBody


class UnlockBody(BaseModel):
    requester: str = Field(min_length=1)


# ----------------------------------------------------------------------
# App
# ----------------------------------------------------------------------

def create_app(
    orchestrator: UnlockOrchestrator,
    *,
    on_shutdown: Optional[Callable[[], Awaitable[None]]] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if on_shutdown is not None:
            await on_shutdown()

    app = FastAPI(title="timecapsule", lifespan=lifespan)

    @app.exception_handler(CapsuleError)
    async def capsule_error_handler(request: Request, exc: CapsuleError):
        status = status_for(exc)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        error = CapsuleError(str(exc), ErrorCode.INVALID_INPUT)
        return JSONResponse(status_code=422, content={"error": error.to_dict()})

    @app.post("/capsules", status_code=201)
    async def create_capsule(body: CreateCapsuleBody) -> Dict[str, Any]:
        try:
            payload = base64.b64decode(body.content, validate=True)
        except binascii.Error as e:
            raise ValueError(f"content is not valid base64: {e}") from e

        condition = UnlockCondition(body.condition.kind, body.condition.target, body.condition.tolerance)
        capsule_id = await orchestrator.create_capsule(
            body.creator,
            body.recipient,
            body.title,
            payload,
            condition,
            content_type=body.contentType,
        )
        status = await orchestrator.get_capsule_status(capsule_id)
        return status.to_dict()

    @app.post("/capsules/{capsule_id}/unlock")
    async def unlock_capsule(capsule_id: int, body: UnlockBody) -> Dict[str, Any]:
        content = await orchestrator.attempt_unlock(capsule_id, body.requester)
        return {
            "capsuleId": content.capsule_id,
            "title": content.title,
            "contentType": content.content_type,
            "content": base64.b64encode(content.data).decode("ascii"),
            "cached": content.cached,
            "decision": content.decision.to_dict() if content.decision is not None else None,
        }

    @app.get("/capsules")
    async def list_capsules(recipient: Optional[str] = None, creator: Optional[str] = None) -> Dict[str, Any]:
        if (recipient is None) == (creator is None):
            raise ValueError("exactly one of recipient or creator is required")
        if recipient is not None:
            statuses = await orchestrator.list_capsules(recipient, role="recipient")
        else:
            statuses = await orchestrator.list_capsules(creator, role="creator")
        return {"capsules": [s.to_dict() for s in statuses]}

    @app.get("/capsules/{capsule_id}")
    async def capsule_status(capsule_id: int) -> Dict[str, Any]:
        status = await orchestrator.get_capsule_status(capsule_id)
        return status.to_dict()

    return app


def serve(settings=None) -> None:
    """Run the API under uvicorn with a runtime built from settings."""
    import uvicorn

    from timecapsule.core.runtime import CapsuleRuntime
    from timecapsule.core.settings import get_settings
    from timecapsule.utils.logging import configure_logging

    settings = settings or get_settings()
    configure_logging(settings.runtime.log_level)

    runtime = CapsuleRuntime(settings)
    app = create_app(runtime.orchestrator, on_shutdown=runtime.aclose)
    logger.info("Serving timecapsule API on %s:%d", settings.api.host, settings.api.port)
    uvicorn.run(app, host=settings.api.host, port=settings.api.port, log_level=settings.runtime.log_level.lower())


def main() -> None:
    serve()
