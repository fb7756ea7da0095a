import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.database import check_db_connection
from app.utils.exceptions import AppException
from app.middleware.error_handler import (
    app_exception_handler,
    validation_exception_handler,
    integrity_error_handler,
    generic_exception_handler,
)
from app.api.v1 import (
    users, categories, equipment, reservations, waitlist, borrowings, maintenance, notifications,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
API_VERSION = "1.0.0"

ROUTERS = [
    (users,         "Users"),
    (categories,    "Categories"),
    (equipment,     "Equipment"),
    (reservations,  "Reservations"),
    (waitlist,      "Waitlist"),
    (borrowings,    "Borrowings"),
    (maintenance,   "Maintenance"),
    (notifications, "Notifications"),
]


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=API_VERSION,
        description="Laboratory equipment reservations, borrowing, maintenance windows and waitlists",
        # API docs are not served in production
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url=None if settings.is_production else "/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─── Exception Handlers ───────────────────────────────────────────────────
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    for module, tag in ROUTERS:
        app.include_router(module.router, prefix=API_PREFIX, tags=[tag])

    # ─── Startup ──────────────────────────────────────────────────────────────
    @app.on_event("startup")
    def on_startup():
        if check_db_connection():
            logger.info("Database reachable")
        else:
            logger.error("Database unreachable; requests will fail until it is back")
        logger.info(
            f"Booking rules: penalty {settings.PENALTY_RATE_PER_DAY}/day, "
            f"waitlist grace {settings.WAITLIST_GRACE_MINUTES} min, "
            f"approval required for {settings.get_approval_required_roles()}"
        )

    @app.get("/health", tags=["Health"])
    def health():
        return {
            "status":   "ok",
            "app":      settings.APP_NAME,
            "version":  API_VERSION,
            "database": "ok" if check_db_connection() else "unavailable",
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.APP_HOST, port=settings.APP_PORT,
                reload=settings.is_development)
