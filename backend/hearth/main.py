import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hearth.core.config import settings
import hearth.models  # noqa: F401  # force model registration

from hearth.api.errors import authz_error_handler
from hearth.api.v1.access import router as access_router
from hearth.api.v1.members import router as members_router
from hearth.api.v1.roles import router as roles_router
from hearth.api.v1.tenants import router as tenants_router
from hearth.auth.errors import AuthzError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def create_application() -> FastAPI:
    app = FastAPI(title="Hearth Authorization API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            # Local development (web client)
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AuthzError, authz_error_handler)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "hearth"}

    # Routers
    app.include_router(tenants_router, prefix="/api/v1")
    app.include_router(roles_router, prefix="/api/v1")
    app.include_router(members_router, prefix="/api/v1")
    app.include_router(access_router, prefix="/api/v1")

    if settings.AUTHZ_SKIP_MEMBERSHIP_CHECK:
        logger.warning("AUTHZ_SKIP_MEMBERSHIP_CHECK is on (environment=%s); remove before production", settings.ENVIRONMENT)

    return app


app = create_application()
