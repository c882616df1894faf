"""Chat endpoints: sessions, messages, usage and uploads."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..chat.categories import INTEREST_CATEGORIES
from ..chat.controller import ChatController, session_to_dict
from ..chat.errors import (
    ChatError,
    ChatNotFoundError,
    ChatServiceError,
    ChatValidationError,
    QuotaExceededError,
    SendInProgressError,
)
from ..chat.grouping import group_sessions_by_date
from ..chat.uploads import UnsupportedUploadError, UploadPayload
from ..observability.logging import set_log_context
from ..security.auth import AuthContext, get_auth_context

logger = logging.getLogger(__name__)

router = APIRouter()


class SendMessageRequest(BaseModel):
    message: str = Field(..., description="Message text")
    category: Optional[str] = Field(None, description="Interest category id")
    file_context: Optional[str] = Field(None, description="Text extracted from an attachment")


class RenameSessionRequest(BaseModel):
    title: str = Field(..., description="New session title")


class CategoryRequest(BaseModel):
    category: Optional[str] = None


def _error_response(exc: ChatError) -> JSONResponse:
    """Map a chat error to its HTTP response."""
    body = {"detail": str(exc), "reason": exc.kind.value}
    headers = {}
    if isinstance(exc, QuotaExceededError):
        retry_after = int(exc.retry_after.total_seconds()) if exc.retry_after else None
        body["retry_after"] = retry_after
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        status_code = 429
    elif isinstance(exc, SendInProgressError):
        status_code = 409
    elif isinstance(exc, ChatNotFoundError):
        status_code = 404
    elif isinstance(exc, UnsupportedUploadError):
        status_code = 415
    elif isinstance(exc, ChatValidationError):
        status_code = 400
    elif isinstance(exc, ChatServiceError):
        status_code = 502
    else:
        status_code = 500
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def get_controller(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
) -> ChatController:
    """Resolve the caller's controller from the registry."""
    registry = getattr(request.app.state, "controller_registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Chat is not available")

    set_log_context(user_id=str(auth.user_id))
    try:
        controller = await registry.get_or_create(auth.user_id)
    except ChatServiceError as e:
        logger.error("Failed to load chat state: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    controller.access_token = auth.token
    return controller


@router.get("/state")
async def get_state(controller: ChatController = Depends(get_controller)):
    """Full chat state snapshot for the caller."""
    return controller.snapshot()


@router.get("/categories")
async def list_categories():
    return [category.to_dict() for category in INTEREST_CATEGORIES]


@router.put("/category")
async def set_category(
    body: CategoryRequest,
    controller: ChatController = Depends(get_controller),
):
    try:
        controller.set_category(body.category)
    except ChatError as e:
        return _error_response(e)
    return {"selected_category": controller.selected_category}


@router.get("/usage")
async def get_usage(controller: ChatController = Depends(get_controller)):
    """Token budget, cooldown and upload allowance for today."""
    return {
        "tokens": controller.usage_summary(),
        "uploads": controller.upload_gate.usage_summary(),
    }


@router.get("/sessions")
async def list_sessions(controller: ChatController = Depends(get_controller)):
    """Sessions grouped by recency."""
    try:
        await controller.refresh_sessions()
    except ChatError as e:
        return _error_response(e)
    return [
        {"label": label, "sessions": [session_to_dict(s) for s in sessions]}
        for label, sessions in group_sessions_by_date(
            controller.sessions, controller.tracker.now()
        )
    ]


@router.post("/sessions/new")
async def new_session(controller: ChatController = Depends(get_controller)):
    """Clear the active session; the next message starts a new one."""
    controller.new_chat()
    return {"active_session_id": None}


@router.post("/sessions/{session_id}/select")
async def select_session(
    session_id: uuid.UUID,
    controller: ChatController = Depends(get_controller),
):
    try:
        session = await controller.select_session(session_id)
    except ChatError as e:
        return _error_response(e)
    return {
        "session": session_to_dict(session),
        "transcript": [entry.to_dict() for entry in controller.transcript],
    }


@router.patch("/sessions/{session_id}")
async def rename_session(
    session_id: uuid.UUID,
    body: RenameSessionRequest,
    controller: ChatController = Depends(get_controller),
):
    try:
        session = await controller.rename_session(session_id, body.title)
    except ChatError as e:
        return _error_response(e)
    return session_to_dict(session)


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: uuid.UUID,
    controller: ChatController = Depends(get_controller),
):
    try:
        await controller.delete_session(session_id)
    except ChatError as e:
        return _error_response(e)
    return {"status": "deleted", "session_id": str(session_id)}


@router.post("/messages")
async def send_message(
    body: SendMessageRequest,
    controller: ChatController = Depends(get_controller),
):
    """Send a message in the active session, or start a new one."""
    try:
        result = await controller.send_message(
            body.message,
            category=body.category,
            file_context=body.file_context,
        )
    except ChatError as e:
        return _error_response(e)
    return {
        **result.to_dict(),
        "transcript": [entry.to_dict() for entry in controller.transcript],
        "usage": controller.usage_summary(),
    }


@router.post("/uploads", status_code=201)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    controller: ChatController = Depends(get_controller),
):
    """Store a PDF or image attachment against today's allowance."""
    content = await file.read()
    max_bytes = request.app.state.settings.max_upload_bytes
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413, detail=f"File exceeds the {max_bytes} byte limit"
        )

    payload = UploadPayload(
        file_name=file.filename or "upload",
        content=content,
        content_type=file.content_type or "",
    )
    try:
        record = await controller.request_upload(payload)
    except ChatError as e:
        return _error_response(e)
    return record.to_dict()


@router.get("/uploads")
async def list_uploads(
    session_id: Optional[uuid.UUID] = Query(None, description="Defaults to the active session"),
    controller: ChatController = Depends(get_controller),
):
    try:
        records = await controller.list_uploads(session_id)
    except ChatError as e:
        return _error_response(e)
    return [record.to_dict() for record in records]


@router.delete("/uploads/{upload_id}")
async def delete_upload(
    upload_id: uuid.UUID,
    controller: ChatController = Depends(get_controller),
):
    try:
        await controller.delete_upload(upload_id)
    except ChatError as e:
        return _error_response(e)
    return {"status": "deleted", "upload_id": str(upload_id)}
