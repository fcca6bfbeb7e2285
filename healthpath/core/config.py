from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator
import json
import os
from urllib.parse import quote_plus


class Settings(BaseSettings):
    # Project Information
    PROJECT_NAME: str = "HealthPath Reminders"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    # Database
    POSTGRES_SERVER: Optional[str] = None
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: Optional[str] = None
    SQLALCHEMY_DATABASE_URI: Optional[str] = None

    # Timezone used when a reminder carries none
    DEFAULT_TIMEZONE: str = "UTC"

    # Logging
    LOG_LEVEL: str = "INFO"

    # API Security (JSON list or comma-separated string)
    VALID_API_KEYS: str = ""
    REQUIRE_API_KEY: bool = True

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        # Derive SQLALCHEMY_DATABASE_URI if not provided
        if not self.SQLALCHEMY_DATABASE_URI:
            if self.POSTGRES_USER and self.POSTGRES_SERVER and self.POSTGRES_DB:
                safe_user = quote_plus(self.POSTGRES_USER)
                if self.POSTGRES_PASSWORD:
                    safe_password = quote_plus(self.POSTGRES_PASSWORD)
                    self.SQLALCHEMY_DATABASE_URI = (
                        f"postgresql://{safe_user}:{safe_password}@{self.POSTGRES_SERVER}:"
                        f"{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
                    )
                else:
                    self.SQLALCHEMY_DATABASE_URI = (
                        f"postgresql://{safe_user}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
                    )
            else:
                self.SQLALCHEMY_DATABASE_URI = f"sqlite:///{os.path.join(os.getcwd(), 'healthpath.db')}"
        return self

    @property
    def api_keys(self) -> List[str]:
        raw = (self.VALID_API_KEYS or "").strip()
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            # Fallback: treat as comma-separated string
            return [key.strip() for key in raw.split(",") if key.strip()]
        if isinstance(parsed, list):
            return [str(key) for key in parsed]
        return [str(parsed)]

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
