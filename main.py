"""
FastAPI backend for the interactive property map.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
import logging


from api.sessions import MapSessionStore
from config import (
    ENVIRONMENT,
    get_api_key,
    get_session_store,
    is_production,
    set_session_store,
)
from api.routes import map

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

session_store = MapSessionStore()
set_session_store(session_store)
logger.info("Map session store initialized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Dispose every live map so no timer outlives the process
    get_session_store().close_all()


# Create FastAPI app
app = FastAPI(
    title="Property Map API",
    description="Interactive property map: clustering, heatmap, area drawing and location",
    version="1.0.0",
    lifespan=lifespan,
)

# Log each request method, path, and running time
class RequestTimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s %.2f ms", request.method, request.url.path, elapsed_ms)
        return response


app.add_middleware(RequestTimingMiddleware)

# Configure CORS - Allow all origins (open everywhere)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=False,  # Must be False when allow_origins=["*"]
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
    expose_headers=["*"],  # Expose all headers
)

# Include routers
app.include_router(map.router, prefix="/api/maps", tags=["maps"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Property Map API", "version": "1.0.0", "docs": "/docs"}


@app.get("/health")
async def health():
    """Health check endpoint with environment and map configuration info."""
    api_key_configured = get_api_key() is not None
    return {
        "status": "healthy" if api_key_configured else "degraded",
        "environment": "production" if is_production() else "development",
        "environment_variable": ENVIRONMENT,
        "maps": {
            "api_key_configured": api_key_configured,
            "active_sessions": len(get_session_store()),
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
