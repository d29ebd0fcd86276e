"""
Clip Gallery - FastAPI Backend
Course/assignment video galleries backed by Cloudflare Stream.
"""

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from services.tus import TUS_ALLOW_HEADERS, preflight_headers
from routers import (
    health,
    auth,
    api,
    gallery,
    upload_keys,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Clip Gallery API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if not settings.moderator_emails:
        print("⚠️ MODERATOR_EMAILS is empty; nobody can hide clips.")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Clip Gallery API",
    description="Share short project clips per course assignment",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Location", "Tus-Resumable"],
)


@app.middleware("http")
async def upload_key_preflight(request: Request, call_next):
    """Answer CORS preflights for upload-key URLs from any origin."""
    path = request.url.path
    if request.method == "OPTIONS" and path.startswith("/k/"):
        if path.endswith("/upload"):
            return Response(status_code=204, headers=preflight_headers("Content-Type", expose=False))
        return Response(status_code=204, headers=preflight_headers(TUS_ALLOW_HEADERS))
    return await call_next(request)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(api.router, prefix="/api", tags=["Clips"])
app.include_router(gallery.router, prefix="/api", tags=["Gallery"])
app.include_router(upload_keys.router, tags=["Upload Keys"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Clip Gallery API",
        "version": "0.1.0",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT)
