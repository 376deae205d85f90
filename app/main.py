from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.enrollments.router import router as enrollments_router
from app.api.v1.leaves.router import router as leaves_router
from app.api.v1.security_gate.router import router as security_router
from app.api.v1.settings.router import router as settings_router
from app.core.config import settings
from app.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Campus Leave Backend")

    # CORS: allow the web client to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(leaves_router)
    app.include_router(security_router)
    app.include_router(enrollments_router)
    app.include_router(settings_router)

    return app


app = create_app()
