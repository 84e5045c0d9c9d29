import logging
import os
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import auth
import catalog
import news
import reports
import watchlist
from config import Settings
from database import ensure_indexes, get_database
from mailer import Mailer
from security import PasswordHasher, TokenService

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    if db is None:
        db = get_database(settings)
    ensure_indexes(db)

    app = FastAPI(title="Connetwork Forum API", version="0.1.0")
    app.state.settings = settings
    app.state.db = db
    app.state.tokens = TokenService(settings)
    app.state.hasher = PasswordHasher(settings.bcrypt_rounds)
    app.state.mailer = mailer or Mailer(settings)

    # -----------------------------
    # Middleware
    # -----------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        elapsed = (time.perf_counter() - started) * 1000
        logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed)
        return response

    # -----------------------------
    # Error mapping
    # -----------------------------
    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key(request: Request, exc: DuplicateKeyError):
        logger.warning("Duplicate key on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": "Resource already exists"})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Server error"})

    # -----------------------------
    # Basic routes
    # -----------------------------
    @app.get("/")
    def root():
        return {"message": "Connetwork Forum API running"}

    @app.get("/test")
    def test_database():
        status_msg = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": settings.database_name,
            "connection_status": "Not Connected",
            "collections": [],
        }
        try:
            status_msg["collections"] = db.list_collection_names()[:10]
            status_msg["database"] = "✅ Connected"
            status_msg["connection_status"] = "Connected"
        except Exception as e:
            status_msg["database"] = f"⚠️ Error: {str(e)[:80]}"
        return status_msg

    app.include_router(auth.router)
    app.include_router(catalog.router)
    app.include_router(news.router)
    app.include_router(watchlist.router)
    app.include_router(reports.router)
    return app


if __name__ == "__main__":
    import uvicorn

    configure_logging(Settings.from_env().log_level)
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=port)
