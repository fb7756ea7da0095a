from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # ─── Application ───────────────────────────────────────────────────────────
    APP_NAME: str = "Lab Equipment Reservation System"
    APP_ENV:  str = "development"
    APP_HOST:  str = "0.0.0.0"
    APP_PORT:  int = 8000

    # ─── Database ──────────────────────────────────────────────────────────────
    DATABASE_URL:          str
    DATABASE_POOL_SIZE:    int  = 10
    DATABASE_MAX_OVERFLOW: int  = 20
    DATABASE_POOL_TIMEOUT: int  = 30
    DATABASE_ECHO:         bool = False

    # ─── JWT (tokens are issued by the identity service) ──────────────────────
    SECRET_KEY: str
    ALGORITHM:  str = "HS256"

    # ─── CORS ──────────────────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # ─── Borrowing & Reservations ─────────────────────────────────────────────
    PENALTY_RATE_PER_DAY:    int = 5000      # currency minor units per started late day
    PENALTY_CURRENCY:        str = "Rp"
    MAX_EXTENSION_DAYS:      int = 7
    WAITLIST_GRACE_MINUTES:  int = 30
    DEFAULT_SLOT_MINUTES:    int = 60
    APPROVAL_REQUIRED_ROLES: str = "STUDENT"

    def get_cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    def get_approval_required_roles(self) -> List[str]:
        return [r.strip().upper() for r in self.APPROVAL_REQUIRED_ROLES.split(",") if r.strip()]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    model_config = {"env_file": ".env.example", "case_sensitive": True, "extra": "ignore"}


settings = Settings()


# ─── Role-based borrowing limits ──────────────────────────────────────────────
# Static table, loaded once. Keys match RoleName values.
ROLE_LIMITS = {
    "STUDENT":   {"maxItems": 3,  "maxDays": 14, "maxExtensions": 1},
    "LECTURER":  {"maxItems": 7,  "maxDays": 30, "maxExtensions": 3},
    "LAB_STAFF": {"maxItems": 5,  "maxDays": 21, "maxExtensions": 2},
    "ADMIN":     {"maxItems": 10, "maxDays": 60, "maxExtensions": 5},
}

DEFAULT_ROLE = "STUDENT"
