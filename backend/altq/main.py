"""
AltQ API - Main FastAPI application.

Virtual queues for salons: customers join remotely, follow their position
live and check in on arrival; owners run the queue from a dashboard.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from altq.config import get_settings
from altq.database import async_session_maker, init_db
from altq.errors import QueueError
from altq.services.runtime import build_runtime

settings = get_settings()

runtime = build_runtime(settings, async_session_maker)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Runs on startup and shutdown.
    """
    # Startup
    print(f"Starting {settings.app_name} in {settings.app_env} mode...", flush=True)
    await init_db()
    print("Database initialized.", flush=True)

    if settings.enable_background_jobs:
        runtime.scheduler.start()
    else:
        print("Scheduler: Disabled by config", flush=True)

    yield

    # Shutdown
    print("Shutting down...", flush=True)
    await runtime.scheduler.stop()


app = FastAPI(
    title=settings.app_name,
    description="Real-time virtual queues for salons",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)
app.state.runtime = runtime

# CORS middleware - allow the customer app and owner dashboard to connect
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.get("/")
async def root():
    """Root endpoint - basic health check."""
    return {
        "app": settings.app_name,
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "connections": runtime.registry.connection_count,
    }


# Routers
from altq.routers import admin, auth, live_viewers, queue, salons, websocket

app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(salons.router, prefix="/api/salons", tags=["Salons"])
app.include_router(queue.router, prefix="/api/queues", tags=["Queues"])
app.include_router(live_viewers.router, prefix="/api/live-viewers", tags=["Live viewers"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
app.include_router(websocket.router)
