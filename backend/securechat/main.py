"""
SecureChat: FastAPI entry point.

HTTP routes handle registration and login sessions; a single WebSocket
endpoint carries the shared chat room (history, messages, typing, presence).
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from securechat.api import auth, health, users
from securechat.config import settings
from securechat.core.exceptions import ChatError
from securechat.database import SessionLocal, get_db, init_db
from securechat.redis import mirror
from securechat.redis.client import close_redis, init_redis
from securechat.services import chat_service
from securechat.websocket.handlers import chat_ws_handler
from securechat.websocket.sweeper import run_presence_sweeper

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_db()
    except Exception as exc:
        # Nothing works without the primary store; let the server exit
        logger.critical("Primary database unreachable: %s", exc)
        raise

    await init_redis()

    db = SessionLocal()
    try:
        room, created = chat_service.get_or_create_default_room(db)
        if created:
            await mirror.mirror_room(room)
        logger.info("Default room ready: %s", room.name)
    finally:
        db.close()

    sweeper = asyncio.create_task(run_presence_sweeper())
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await close_redis()


app = FastAPI(
    title="SecureChat",
    description="Single-room real-time chat with server-side sessions",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
# allow_origins=["*"] is incompatible with allow_credentials=True under the CORS
# rules. When the wildcard is present (dev), switch to allow_origin_regex=".*"
# which achieves the same effect without triggering Starlette's guard.
_cors_origins = [o for o in settings.CORS_ORIGINS if o != "*"]
_cors_regex = ".*" if len(_cors_origins) < len(settings.CORS_ORIGINS) else None

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_origin_regex=_cors_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Custom exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"error": "Invalid request"})
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first['msg']}" if field else first["msg"]
    return JSONResponse(status_code=400, content={"error": message})


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router)
app.include_router(auth.router, prefix="/api")
app.include_router(users.router, prefix="/api")

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------


@app.websocket("/ws")
async def chat_websocket_endpoint(websocket: WebSocket, db: Session = Depends(get_db)) -> None:
    await chat_ws_handler(websocket, db)


# ---------------------------------------------------------------------------
# Single-page client: must stay the last route
# ---------------------------------------------------------------------------


@app.get("/{full_path:path}", include_in_schema=False)
async def spa_shell(full_path: str) -> FileResponse:
    return FileResponse(STATIC_DIR / "index.html")
