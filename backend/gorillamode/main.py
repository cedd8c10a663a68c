"""
Gorilla Mode Coach Backend API

FastAPI application for real-time exercise form analysis.

Run with:
    uvicorn gorillamode.main:app --reload --host 0.0.0.0 --port 8000

API docs available at:
    http://localhost:8000/docs (Swagger UI)
    http://localhost:8000/redoc (ReDoc)
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gorillamode import __version__
from gorillamode.api.routes import router as api_router
from gorillamode.api.websocket import websocket_endpoint, manager
from gorillamode.core.config import get_config

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan (startup/shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs startup code before app starts accepting requests,
    and cleanup code when app shuts down.
    """
    # Startup
    config = get_config()
    logger.info(" Gorilla Mode API starting up...")
    logger.info(f" Models: {', '.join(manager.registry.available())} (default {config.estimator.default_model})")
    logger.info(" API docs: http://localhost:8000/docs")
    logger.info(" WebSocket: ws://localhost:8000/ws/session")

    yield  # App runs here

    # Shutdown
    for websocket in list(manager.pipelines):
        await manager.disconnect(websocket)
    logger.info(" Gorilla Mode API shutting down...")


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Gorilla Mode API",
    description="""
    **Real-Time Exercise Form Coach**

    Streams webcam frames through a swappable pose model and returns joint
    angles, form feedback and a Bronze/Silver/Gold tier.

    ## Endpoints

    - `GET /api/health` - Health check
    - `GET /api/models` - Selectable pose models
    - `GET /api/angles/definitions` - Tracked joint angles
    - `POST /api/pose/detect` - Single image pose detection
    - `WS /ws/session` - Live analysis session

    ## WebSocket Protocol

    Connect to `/ws/session`, send `start_session`, then frames as JSON:
```json
    {
        "type": "frame",
        "data": {"image_base64": "...", "frame_number": 0},
        "timestamp": 1704067200000
    }
```
    """,
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# =============================================================================
# CORS Middleware
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",      # React dev server
        "http://localhost:5173",      # Vite dev server
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Routes
# =============================================================================

# Include REST API routes
app.include_router(api_router, prefix="/api")

# WebSocket endpoint
app.websocket("/ws/session")(websocket_endpoint)


# =============================================================================
# Root endpoint
# =============================================================================

@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint - API information.
    """
    return {
        "name": "Gorilla Mode API",
        "version": __version__,
        "description": "Real-Time Exercise Form Coach",
        "docs": "/docs",
        "health": "/api/health",
        "websocket": "ws://localhost:8000/ws/session"
    }


# =============================================================================
# Run directly (for development)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gorillamode.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
