# audit_chat/main.py
"""
ASGI entry point: `uvicorn audit_chat.main:app` from backend/.
Brings the schema up to date on startup, then serves the chat session API.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from audit_chat.config import settings
from audit_chat.database import log_where_am_i
from audit_chat.routers import chat_sessions, health

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parents[1]  # holds alembic.ini

app = FastAPI(title="Audit Chat API", version="0.1.0")

# The report dashboard calls us cross-origin and reads the SSE stream
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def run_migrations() -> None:
    """alembic upgrade head, unless RUN_MIGRATIONS is off (tests, read replicas)."""
    if not settings.RUN_MIGRATIONS:
        logger.warning("RUN_MIGRATIONS is off; schema left as is")
        return
    env = {**os.environ, "DATABASE_URL": settings.DATABASE_URL}
    logger.warning("Applying Alembic migrations...")
    subprocess.check_call(["alembic", "upgrade", "head"], cwd=str(BACKEND_DIR), env=env)
    logger.warning("Schema is at head.")


@app.on_event("startup")
def _bootstrap() -> None:
    run_migrations()
    log_where_am_i()


app.include_router(health.router)
app.include_router(chat_sessions.router)


@app.get("/")
def root():
    return {"status": "ok", "message": "Audit chat backend is running"}
