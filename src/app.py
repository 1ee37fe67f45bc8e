"""Main FastAPI application module.

This module initializes the FastAPI application and registers all route handlers.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.errors import (
    error_body,
    http_error_handler,
    service_error_handler,
    unexpected_error_handler,
)
from api.routes import auth, class_route, courses, profile
from config import API_HOST, API_PORT, CORS_ALLOWED_ORIGINS
from core.dependencies import get_gatekeeper
from core.exceptions import ForensicAccessError, Presentation, ServiceUnavailableError
from core.logging_config import setup_logging

# Setup logging
setup_logging()

logger = logging.getLogger(__name__)

# Initialize FastAPI application
app = FastAPI(
    title="Forensic AR Course Access API",
    description="Backend API service for authentication, class enrollment and course unlocks.",
    version="1.0.0",
)
app.state.session_state = None
app.state.startup_error = None

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ForensicAccessError, service_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unexpected_error_handler)

# Register route handlers
app.include_router(auth.router)
app.include_router(class_route.router)
app.include_router(courses.router)
app.include_router(profile.router)


@app.middleware("http")
async def block_when_unavailable(request: Request, call_next):
    """Answer 503 on every API route while the backing services are unreachable."""
    error = app.state.startup_error
    path = request.url.path
    if error is not None and path.startswith("/api") and path != "/api/health":
        return JSONResponse(
            status_code=503,
            content=error_body(str(error), Presentation.BLOCKING),
        )
    return await call_next(request)


@app.on_event("startup")
async def startup_tasks() -> None:
    """Establish connectivity to the identity service and document store."""
    try:
        app.state.session_state = await get_gatekeeper().initialize_with_retry()
        app.state.startup_error = None
    except ServiceUnavailableError as e:
        logger.error("Startup connectivity check failed: %s", e)
        app.state.startup_error = e


@app.on_event("shutdown")
async def shutdown_tasks() -> None:
    await get_gatekeeper().wait_for_verification_emails()


@app.get("/", summary="API 根路径", tags=["Info"])
def root() -> dict:
    """API 根路径，返回 API 信息和文档链接。

    Returns:
        Dictionary with API information and documentation links.
    """
    return {
        "name": "Forensic AR Course Access API",
        "version": "1.0.0",
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc",
        },
        "health": "/api/health",
    }


@app.get("/api/health", summary="健康检查", tags=["Health"])
def health() -> dict:
    """Health check endpoint.

    Returns:
        Dictionary with the startup connectivity status.
    """
    state = app.state.session_state
    error = app.state.startup_error
    if error is not None:
        return {"status": "unavailable", "detail": str(error)}
    return {
        "status": "ok" if state is not None else "starting",
        "connected_at": state.connected_at.isoformat() if state and state.connected_at else None,
        "attempts": state.attempts if state else 0,
    }


# --- Startup code for direct execution ---
if __name__ == "__main__":
    import uvicorn

    server_url = f"http://{API_HOST}:{API_PORT}"
    print(f"🌐 服务地址(后端服务): {server_url}")
    print(f"📚 API 文档: {server_url}/docs")

    uvicorn.run("app:app", host=API_HOST, port=API_PORT, reload=True)
