"""
routes.py — KasAI HTTP endpoints.

POST /api/messages             — deliver one inbound chat message, return the replies
GET  /api/health               — status and latency of both storage tiers
GET  /api/sessions/stats       — live session counts per kind in each tier (KEYS, admin only)
POST /api/sessions/cache/check — PING the cache; restores the breaker (and purges) on success

app.state resources (session_manager, dispatcher) are set in main.py lifespan.
DurableStoreFailure is mapped to 503 STORE_UNAVAILABLE by the handler in main.py.
"""
import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from kasai.api.schemas import CacheCheckResponse, InboundMessage, MessageResponse, OutboundReply
from kasai.config import settings
from kasai.conversation.collaborators import ReplyContent
from kasai.conversation.dispatcher import MessageDispatcher
from kasai.sessions.manager import SessionManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api")


class CollectingSink:
    """ReplySink that buffers replies for the HTTP response."""

    def __init__(self) -> None:
        self.replies: List[ReplyContent] = []

    async def reply(self, content: ReplyContent) -> None:
        self.replies.append(content)


@router.post("/messages", response_model=MessageResponse, tags=["Conversation"])
async def post_message(body: InboundMessage, request: Request) -> MessageResponse:
    """
    Run one inbound message through the dispatcher.

    Always 200 once the message is accepted: store outages are answered in-band
    with an apology reply, the same way the chat transport would see them.
    """
    dispatcher: MessageDispatcher = request.app.state.dispatcher
    sink = CollectingSink()
    await dispatcher.handle_message(body.user_id, body.text, sink, body.display_name)
    logger.info("Handled message user_id=%s replies=%d", body.user_id, len(sink.replies))
    return MessageResponse(
        user_id=body.user_id,
        replies=[OutboundReply.from_content(content) for content in sink.replies],
    )


@router.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """
    Returns service health. 200 when the durable tier answers (a failing cache
    only degrades latency), 503 otherwise.
    """
    manager: SessionManager = request.app.state.session_manager
    report = await manager.health_check()
    report["version"] = settings.app_version
    report["timestamp"] = datetime.now(timezone.utc).isoformat()
    status_code = 200 if report["status"] == "ok" else 503
    return JSONResponse(status_code=status_code, content=report)


@router.get("/sessions/stats", tags=["Sessions"])
async def session_stats(request: Request) -> dict:
    manager: SessionManager = request.app.state.session_manager
    return await manager.session_stats()


@router.post("/sessions/cache/check", response_model=CacheCheckResponse, tags=["Sessions"])
async def check_cache(request: Request) -> CacheCheckResponse:
    manager: SessionManager = request.app.state.session_manager
    healthy = await manager.check_cache_health()
    logger.info("Manual cache health check healthy=%s", healthy)
    return CacheCheckResponse(healthy=healthy)
