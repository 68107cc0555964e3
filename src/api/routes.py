"""FastAPI app for Hookchat: webhook intake and chat streaming."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.responses import StreamingResponse

from src.chat.session import ConversationSession
from src.chat.turns import Turn
from src.config import get_settings
from src.errors import HookchatError, InvalidPayloadError, MethodNotAllowedError, MissingSecretError
from src.storage.db import get_session, init_db
from src.storage.events import list_events
from src.webhooks.ingestion import receive_webhook

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    for name in get_settings().missing_secrets():
        logger.error("%s is not set; set it in the environment or in .env", name)
    await init_db()
    yield


app = FastAPI(
    title="Hookchat API",
    description="Webhook ingestion and streaming chat agent",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Cancel events for chat streams in flight, keyed by conversation id
_active_streams: dict[str, asyncio.Event] = {}


@app.exception_handler(HookchatError)
async def hookchat_error_handler(request: Request, exc: HookchatError):
    headers = {"Allow": "POST"} if isinstance(exc, MethodNotAllowedError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.detail},
        headers=headers,
    )


# --- Pydantic request/response models ---

class WebhookResponse(BaseModel):
    status: str


class EventResponse(BaseModel):
    id: str
    type: str
    action: Optional[str] = None
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    actor: Optional[str] = None
    timestamp: datetime

    model_config = {"from_attributes": True}


class ChatRequest(BaseModel):
    message: Optional[str] = None
    turn: Optional[Turn] = None

    def to_turn(self) -> Turn:
        if self.turn is not None:
            return self.turn
        if self.message:
            return Turn.user(self.message)
        raise InvalidPayloadError("Either message or turn is required")


class ConfirmRequest(BaseModel):
    tool_call_id: str
    approved: bool


class TaskRequest(BaseModel):
    description: str


# --- Endpoints ---

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/check-api-key")
async def check_api_key():
    """Report whether a model provider key is configured."""
    return {"success": bool(get_settings().anthropic.api_key)}


@app.api_route("/webhook", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], response_model=WebhookResponse)
async def webhook(request: Request):
    """Receive a signed webhook delivery."""
    if request.method != "POST":
        raise MethodNotAllowedError("Method not allowed")

    settings = get_settings()
    if not settings.webhook.secret:
        raise MissingSecretError("WEBHOOK_SECRET")

    body = await request.body()
    async with get_session() as session:
        outcome = await receive_webhook(session, body, request.headers, settings.webhook)
    return WebhookResponse(status=outcome.value)


@app.get("/events", response_model=list[EventResponse])
async def get_events(
    type: Optional[str] = Query(None),
    limit: int = Query(50, le=200),
):
    """List recorded events, newest first."""
    async with get_session() as session:
        return await list_events(session, event_type=type, limit=limit)


def _stream(conversation_id: str, chunks: AsyncIterator, cancel_event: asyncio.Event) -> StreamingResponse:
    """Serve ``chunks`` as SSE, cancellable while the body is being sent."""

    async def event_generator() -> AsyncIterator[str]:
        _active_streams[conversation_id] = cancel_event
        try:
            async for chunk in chunks:
                yield f"data: {chunk.model_dump_json(exclude_none=True)}\n\n"
        finally:
            if _active_streams.get(conversation_id) is cancel_event:
                del _active_streams[conversation_id]

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@app.post("/chat/{conversation_id}")
async def chat(conversation_id: str, body: ChatRequest):
    """Append a user turn and stream the assistant's reply as Server-Sent Events."""
    turn = body.to_turn()
    cancel_event = asyncio.Event()
    session = ConversationSession(conversation_id)
    return _stream(conversation_id, session.chat(turn, cancel_event=cancel_event), cancel_event)


@app.post("/chat/{conversation_id}/confirm")
async def confirm_tool_call(conversation_id: str, body: ConfirmRequest):
    """Approve or deny a pending tool call, then continue the conversation."""
    session = ConversationSession(conversation_id)
    if not await session.confirm_tool_call(body.tool_call_id, body.approved):
        return JSONResponse(status_code=404, content={"detail": "Tool call not found"})

    cancel_event = asyncio.Event()
    return _stream(conversation_id, session.chat(None, cancel_event=cancel_event), cancel_event)


@app.post("/chat/{conversation_id}/cancel")
async def cancel_chat(conversation_id: str):
    """Abort the reply currently streaming for a conversation."""
    cancel_event = _active_streams.get(conversation_id)
    if cancel_event is None:
        return {"cancelled": False}
    cancel_event.set()
    return {"cancelled": True}


@app.get("/chat/{conversation_id}/messages", response_model=list[Turn])
async def get_messages(conversation_id: str):
    return await ConversationSession(conversation_id).messages()


@app.delete("/chat/{conversation_id}/messages")
async def clear_messages(conversation_id: str):
    count = await ConversationSession(conversation_id).clear()
    return {"deleted": count}


@app.post("/chat/{conversation_id}/tasks", response_model=Turn)
async def execute_task(conversation_id: str, body: TaskRequest):
    """Scheduled-task callback: record the task as a user turn."""
    return await ConversationSession(conversation_id).execute_task(body.description)
