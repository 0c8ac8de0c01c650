import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


class Settings:
    database_url: str = os.getenv("DATABASE_URL", "")
    database_echo: bool = _env_bool("DATABASE_ECHO")

    # fastapi-users JWT settings
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_lifetime_seconds: int = int(os.getenv("JWT_LIFETIME_SECONDS", "3600"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # When true, ledger failures other than a missing table abort the movement.
    stock_ledger_strict: bool = _env_bool("STOCK_LEDGER_STRICT")

    cors_origins: List[str] = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
    ]

    def missing(self) -> List[str]:
        out = []
        if not self.database_url:
            out.append("DATABASE_URL")
        if not self.jwt_secret:
            out.append("JWT_SECRET")
        return out

    def require(self) -> None:
        """Raise if any required setting is absent."""
        missing = self.missing()
        if missing:
            raise RuntimeError(f"Missing required settings: {', '.join(missing)}")


settings = Settings()
