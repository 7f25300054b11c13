"""FastAPI server for patient sign-in and realtime session provisioning."""

from __future__ import annotations

import logging
import os
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth.router import router as auth_router
from .config import Config
from .provisioning.router import router as realtime_router

logger = logging.getLogger(__name__)

_started_at = time.monotonic()

app = FastAPI(title="Voice Visit API")

# CORS middleware for the frontend
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
if Config.ALLOW_ALL_ORIGINS:
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=not Config.ALLOW_ALL_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(realtime_router)


@app.on_event("startup")
async def startup():
    """Warn about missing secrets; routes that need them fail per request."""
    if not Config.validate():
        logger.error("Configuration validation failed; sign-in or provisioning will not work")
    logger.info("Voice visit API ready")


@app.get("/healthz")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "uptime": time.monotonic() - _started_at}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)-8s | %(message)s',
    )

    port = int(os.getenv("PORT", str(Config.PORT)))
    uvicorn.run(app, host=Config.HOST, port=port)
