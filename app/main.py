"""FastAPI backend server for the Lumina study assistant."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Tuple, Union

import openai
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from agents.chat_agent import StudyAssistant
from database.connection import init_db
from .auth import get_current_user_id
from .dependencies import get_assistant

# --------------------------------------------------------------------------- #
# Environment / logging setup
# --------------------------------------------------------------------------- #

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("lumina.api")

# --------------------------------------------------------------------------- #
# FastAPI application
# --------------------------------------------------------------------------- #

app = FastAPI(
    title="Lumina Study Assistant API",
    description="Streaming study assistant with verified legal research and study-planner tools.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

DONE_EVENT = "data: [DONE]\n\n"

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a moment."
USAGE_LIMIT_MESSAGE = "AI usage limit reached. Please contact support."
UNAVAILABLE_MESSAGE = "AI service temporarily unavailable"


# --------------------------------------------------------------------------- #
# Pydantic models
# --------------------------------------------------------------------------- #


class HealthResponse(BaseModel):
    status: str
    message: str


class ChatTurn(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, List[Dict[str, Any]]] = ""


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatTurn] = Field(..., min_length=1, description="Conversation so far, oldest first")
    action: Optional[str] = Field(default=None, description="Response preset: summarise, flashcards, quiz, journal, research")
    enable_web_search: bool = Field(default=False, alias="enableWebSearch")
    deep_search: bool = Field(default=False, alias="deepSearch")
    has_images: bool = Field(default=False, alias="hasImages")


# --------------------------------------------------------------------------- #
# Helper Functions
# --------------------------------------------------------------------------- #


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def upstream_error(exc: Exception) -> Tuple[int, str]:
    """Map a model-gateway failure onto the status the caller should see."""
    status = getattr(exc, "status_code", None)
    if isinstance(exc, openai.RateLimitError) or status == 429:
        return 429, RATE_LIMIT_MESSAGE
    if status == 402:
        return 402, USAGE_LIMIT_MESSAGE
    return 500, UNAVAILABLE_MESSAGE


def sse_chunk(token: str) -> str:
    return f"data: {json.dumps({'choices': [{'delta': {'content': token}}]})}\n\n"


async def sse_events(request: Request, first: Optional[str], tokens: AsyncIterator[str]) -> AsyncIterator[str]:
    """Frame tokens as SSE events and close with [DONE].

    Stops emitting as soon as the client goes away; tool side effects that
    already happened stay committed.
    """
    try:
        if first is not None:
            yield sse_chunk(first)
        async for token in tokens:
            if await request.is_disconnected():
                logger.info("Client disconnected; stopping stream")
                return
            yield sse_chunk(token)
        yield DONE_EVENT
    except Exception as exc:
        # Headers are already sent; the best we can do is end the stream cleanly.
        logger.error("Stream aborted after start: %s", exc)
        yield DONE_EVENT
    finally:
        await tokens.aclose()


# --------------------------------------------------------------------------- #
# Error handlers
# --------------------------------------------------------------------------- #


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return _error(400, f"Invalid request: {location} {first.get('msg', '')}".strip())


# --------------------------------------------------------------------------- #
# API Routes
# --------------------------------------------------------------------------- #


@app.get("/", response_model=HealthResponse)
async def root() -> HealthResponse:
    """Root endpoint - health check."""
    return HealthResponse(status="ok", message="Lumina Study Assistant API is running")


@app.get("/api/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", message="Backend is operational")


@app.post("/api/chat")
async def chat(
    payload: ChatRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    assistant: StudyAssistant = Depends(get_assistant),
):
    """Answer the conversation as a token stream (text/event-stream)."""
    turns = [turn.model_dump() for turn in payload.messages]
    logger.info(
        "CHAT REQUEST: user=%s, turns=%d, action=%s, deep_search=%s",
        user_id, len(turns), payload.action or "chat", payload.deep_search or payload.enable_web_search,
    )

    try:
        run = await assistant.start(
            user_id,
            turns,
            action=payload.action,
            deep_search=payload.deep_search or payload.enable_web_search,
            has_images=payload.has_images,
        )
        tokens = run.tokens()
        # Pull the first token before responding so model failures become HTTP errors.
        try:
            first: Optional[str] = await tokens.__anext__()
        except StopAsyncIteration:
            first = None
    except Exception as exc:
        status, message = upstream_error(exc)
        logger.error("Chat failed before streaming (status=%d): %r", status, exc)
        return _error(status, message)

    return StreamingResponse(
        sse_events(request, first, tokens),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# Startup event
@app.on_event("startup")
async def startup_event():
    """Create tables on app startup."""
    init_db()
    logger.info("✓ Database ready")


# --------------------------------------------------------------------------- #
# Entrypoint
# --------------------------------------------------------------------------- #


if __name__ == "__main__":
    import uvicorn

    print("=" * 60)
    print("Starting Lumina Study Assistant Backend Server")
    print("=" * 60)
    print("Server will be available at: http://localhost:8000")
    print("API documentation: http://localhost:8000/docs")
    print("=" * 60)

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
