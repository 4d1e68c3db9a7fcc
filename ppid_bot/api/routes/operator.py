"""
Operator console - commands and the notification stream.

Every endpoint requires ``X-Operator-API-Key``.
"""
import asyncio
import base64
import binascii
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from ppid_bot.api.dependencies.operator_auth import require_operator_api_key
from ppid_bot.api.dependencies.services import get_container, get_operator_service
from ppid_bot.core.logging import get_logger
from ppid_bot.db.models import Evaluation, EvaluationStatus, KnowledgeGap, Recap
from ppid_bot.domain.container import ServiceContainer
from ppid_bot.domain.services.notification_bus import ConnectionNotification, Notification, QrNotification
from ppid_bot.domain.services.operator_service import OperatorService
from ppid_bot.domain.services.whatsapp import MediaAttachment

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_operator_api_key)])

_SSE_KEEPALIVE_SECONDS = 15.0

# One attachment, decoded
_MAX_MEDIA_BYTES = 16 * 1024 * 1024


# ==================== schemas ====================


class MediaUpload(BaseModel):
    mimetype: str = Field(min_length=1, max_length=255)
    filename: Optional[str] = Field(default=None, max_length=255)
    # base64, as the console reads it from a file input
    data: str = Field(min_length=1)

    @field_validator("data")
    @classmethod
    def validate_data(cls, v: str) -> str:
        try:
            decoded = base64.b64decode(v, validate=True)
        except binascii.Error as e:
            raise ValueError("data must be base64") from e
        if len(decoded) > _MAX_MEDIA_BYTES:
            raise ValueError(f"attachment larger than {_MAX_MEDIA_BYTES // (1024 * 1024)} MB")
        return v

    def to_attachment(self) -> MediaAttachment:
        return MediaAttachment(mimetype=self.mimetype, data=base64.b64decode(self.data), filename=self.filename)


class ManualReplyRequest(BaseModel):
    """Text, or an attachment whose caption is ``message``."""

    chat_id: str = Field(min_length=1)
    message: str = Field(default="", max_length=4096)
    media: Optional[MediaUpload] = None

    @model_validator(mode="after")
    def require_content(self) -> "ManualReplyRequest":
        if not self.message.strip() and self.media is None:
            raise ValueError("message or media is required")
        return self


class ChatRequest(BaseModel):
    chat_id: str = Field(min_length=1)


class TrainRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)
    answer: str = Field(min_length=1, max_length=8000)


class TestPromptRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)


class DismissGapRequest(BaseModel):
    question: str = Field(min_length=1)


class SettingsUpdateRequest(BaseModel):
    """Omitted fields keep their current value."""
    humor_level: Optional[int] = Field(default=None, ge=0, le=100)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    groq_api_key: Optional[str] = None
    llm_provider: Optional[str] = Field(default=None, pattern="^(|groq|ollama)$")


class ResolveEvaluationRequest(BaseModel):
    action: EvaluationStatus


def _timestamped_filename(prefix: str, extension: str) -> str:
    return f"{prefix}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}.{extension}"


# ==================== lifecycle ====================


@router.post("/start", summary="Resume auto-replies")
async def start(operator: OperatorService = Depends(get_operator_service)) -> dict:
    return await operator.start()


@router.post("/stop", summary="Pause auto-replies")
async def stop(operator: OperatorService = Depends(get_operator_service)) -> dict:
    return await operator.stop()


@router.get("/status")
async def status(operator: OperatorService = Depends(get_operator_service)) -> dict:
    return await operator.status()


@router.post("/logout", summary="Unlink the WhatsApp device")
async def logout(operator: OperatorService = Depends(get_operator_service)) -> dict:
    return await operator.logout()


# ==================== conversations ====================


@router.post("/manual-reply")
async def manual_reply(
    body: ManualReplyRequest,
    operator: OperatorService = Depends(get_operator_service),
) -> dict:
    media = body.media.to_attachment() if body.media is not None else None
    return await operator.manual_reply(body.chat_id, body.message, media)


@router.post("/release-handover")
async def release_handover(
    body: ChatRequest,
    operator: OperatorService = Depends(get_operator_service),
) -> dict:
    return await operator.release_handover(body.chat_id)


@router.post("/close-conversation", summary="Send the rating survey now")
async def close_conversation(
    body: ChatRequest,
    operator: OperatorService = Depends(get_operator_service),
) -> dict:
    return await operator.close_conversation(body.chat_id)


# ==================== knowledge ====================


@router.post("/train")
async def train(
    body: TrainRequest,
    operator: OperatorService = Depends(get_operator_service),
) -> dict:
    return await operator.train(body.question, body.answer)


@router.post("/test-prompt")
async def test_prompt(
    body: TestPromptRequest,
    operator: OperatorService = Depends(get_operator_service),
) -> dict:
    return await operator.test_prompt(body.query)


@router.get("/knowledge-gaps", response_model=List[KnowledgeGap])
async def list_knowledge_gaps(operator: OperatorService = Depends(get_operator_service)) -> list[KnowledgeGap]:
    return await operator.list_knowledge_gaps()


@router.post("/knowledge-gaps/dismiss")
async def dismiss_knowledge_gap(
    body: DismissGapRequest,
    operator: OperatorService = Depends(get_operator_service),
) -> dict:
    return await operator.dismiss_knowledge_gap(body.question)


@router.post("/generate-questions")
async def generate_questions(operator: OperatorService = Depends(get_operator_service)) -> dict:
    return await operator.generate_questions()


@router.get("/documents")
async def list_documents(operator: OperatorService = Depends(get_operator_service)) -> list[dict]:
    return operator.list_documents()


@router.post("/reindex", status_code=202)
async def reindex(operator: OperatorService = Depends(get_operator_service)) -> dict:
    return await operator.reindex()


# ==================== settings ====================


@router.get("/settings")
async def get_settings(operator: OperatorService = Depends(get_operator_service)) -> dict:
    return operator.get_settings()


@router.put("/settings")
async def update_settings(
    body: SettingsUpdateRequest,
    operator: OperatorService = Depends(get_operator_service),
) -> dict:
    return await operator.update_settings(body.model_dump(exclude_none=True))


# ==================== analytics ====================


@router.get("/survey-stats")
async def survey_stats(operator: OperatorService = Depends(get_operator_service)) -> dict:
    return await operator.survey_stats()


@router.get("/evaluations", response_model=List[Evaluation])
async def list_evaluations(operator: OperatorService = Depends(get_operator_service)) -> list[Evaluation]:
    return await operator.list_evaluations()


@router.post("/evaluations/{evaluation_id}/resolve")
async def resolve_evaluation(
    evaluation_id: str,
    body: ResolveEvaluationRequest,
    operator: OperatorService = Depends(get_operator_service),
) -> dict:
    return await operator.resolve_evaluation(evaluation_id, body.action)


@router.get("/recaps", response_model=List[Recap])
async def list_recaps(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    operator: OperatorService = Depends(get_operator_service),
) -> list[Recap]:
    return await operator.list_recaps(limit)


@router.get("/recaps/export.csv", summary="Export recaps as CSV")
async def export_recaps_csv(operator: OperatorService = Depends(get_operator_service)) -> Response:
    content = await operator.recaps_csv()
    filename = _timestamped_filename("rekap_chat", "csv")
    logger.info("Recaps exported", extra_data={"format": "csv"})
    return Response(
        content="\ufeff" + content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/recaps/export.xlsx", summary="Export recaps as Excel")
async def export_recaps_xlsx(operator: OperatorService = Depends(get_operator_service)) -> Response:
    content = await operator.recaps_xlsx()
    filename = _timestamped_filename("rekap_chat", "xlsx")
    logger.info("Recaps exported", extra_data={"format": "xlsx"})
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ==================== notifications ====================


def _format_event(notification: Notification) -> str:
    return f"event: {notification.type}\ndata: {notification.model_dump_json()}\n\n"


async def _event_stream(request: Request, container: ServiceContainer) -> AsyncIterator[str]:
    queue = container.notifications.subscribe()
    try:
        # Late subscribers still need the current connection state
        connection = container.runtime.connection
        initial = [ConnectionNotification(state=connection.state.value, reason=connection.reason)]
        if connection.qr:
            initial.append(QrNotification(qr=connection.qr))
        for notification in initial:
            yield _format_event(notification)

        while not await request.is_disconnected():
            try:
                notification = await asyncio.wait_for(queue.get(), timeout=_SSE_KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield _format_event(notification)
    finally:
        container.notifications.unsubscribe(queue)


@router.get("/events", summary="Server-sent operator notifications")
async def events(
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> StreamingResponse:
    return StreamingResponse(
        _event_stream(request, container),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
