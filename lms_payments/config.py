import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import Request
from pydantic import BaseModel

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"


class Settings(BaseModel):
    database_url: str
    jwt_secret: Optional[str] = None

    fawaterak_api_url: str = "https://staging.fawaterk.com/api/v2"
    fawaterak_api_key: Optional[str] = None
    fawaterak_provider_key: Optional[str] = None
    gateway_timeout: float = 30.0

    public_url: str = "http://localhost:3000"
    currency: str = "EGP"
    log_level: str = "INFO"

    @property
    def gateway_configured(self) -> bool:
        return bool(self.fawaterak_api_key and self.fawaterak_provider_key)

    @classmethod
    def from_env(cls) -> "Settings":
        # Existing environment variables take precedence over .env
        load_dotenv(dotenv_path=ENV_PATH)

        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set. Check your .env file.")

        return cls(
            database_url=database_url,
            jwt_secret=os.getenv("JWT_SECRET"),
            fawaterak_api_url=os.getenv("FAWATERAK_API_URL", cls.model_fields["fawaterak_api_url"].default),
            fawaterak_api_key=os.getenv("FAWATERAK_API_KEY"),
            fawaterak_provider_key=os.getenv("FAWATERAK_PROVIDER_KEY"),
            gateway_timeout=float(os.getenv("FAWATERAK_TIMEOUT", "30")),
            public_url=os.getenv("APP_URL", cls.model_fields["public_url"].default),
            currency=os.getenv("PAYMENT_CURRENCY", "EGP"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
