import json
from typing import List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Back-office Backend"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = 60

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)
    db_connect_timeout_seconds: int = Field(default=10, ge=1, le=120)
    db_statement_timeout_ms: int = Field(default=15000, ge=100, le=600_000)
    store_retry_after_seconds: int = Field(default=5, ge=1, le=300)

    # FULFILLMENT
    allow_negative_stock: bool = True
    report_partial_payments: bool = False
    order_lock_ttl_seconds: int = Field(default=30, ge=1, le=3600)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {
            "",
            "change_me",
            "dev-secret-key-change-before-prod",
        }
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        if self.database_url.lower().startswith("sqlite"):
            raise ValueError("DATABASE_URL must point to a networked database in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
