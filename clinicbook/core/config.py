from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage: "memory", "file" (local JSON mock backend) or "sql"
    store_backend: str = "file"
    local_db_dir: str = "local_db"
    database_url: str = ""

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Slot/appointment business rules
    slot_duration_minutes: int = 30
    default_booking_status: str = "pending"
    # Slots are offered on this many dates starting today
    booking_horizon_days: int = 90

    # Env
    env: str = "development"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def local_db_path(self) -> Path:
        path = Path(self.local_db_dir)
        return path if path.is_absolute() else _PROJECT_ROOT / path


settings = Settings()
