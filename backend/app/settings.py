from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="NODE_ENV")
    port: int = Field(default=8080, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # CORS / Frontend
    frontend_base_url: str = Field(
        default="http://localhost:3000", validation_alias="FRONTEND_BASE_URL"
    )
    frontend_url: str | None = Field(default=None, validation_alias="FRONTEND_URL")
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    ddb_endpoint_url: str | None = Field(default=None, validation_alias="DDB_ENDPOINT_URL")
    ddb_connect_timeout_s: float = Field(default=2.0, validation_alias="DDB_CONNECT_TIMEOUT_S")
    ddb_read_timeout_s: float = Field(default=10.0, validation_alias="DDB_READ_TIMEOUT_S")

    # Key material for encrypted cursor tokens (nextToken).
    pagination_token_key: str | None = Field(
        default=None, validation_alias="PAGINATION_TOKEN_KEY"
    )

    # Auth (Cognito)
    cognito_user_pool_id: str | None = Field(
        default=None, validation_alias="COGNITO_USER_POOL_ID"
    )
    cognito_client_id: str | None = Field(
        default=None, validation_alias="COGNITO_CLIENT_ID"
    )
    cognito_region: str | None = Field(default=None, validation_alias="COGNITO_REGION")
    # Token claim carrying the caller's company id.
    cognito_company_claim: str = Field(
        default="custom:company_id", validation_alias="COGNITO_COMPANY_CLAIM"
    )

    # Proposal lifecycle
    status_note_max_length: int = Field(default=500, validation_alias="STATUS_NOTE_MAX_LENGTH")

    # ---- helpers / derived flags ----

    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        if v == "test":
            return "test"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def is_development(self) -> bool:
        return self.normalized_environment == "development"

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Development/test runs may start with partial config (e.g. unit tests
        against a fake table), but production must be fully configured.
        """
        if not self.is_production:
            return

        missing: list[str] = []
        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")
        if not self.cognito_user_pool_id:
            missing.append("COGNITO_USER_POOL_ID")
        if not self.cognito_client_id:
            missing.append("COGNITO_CLIENT_ID")
        if not self.pagination_token_key:
            missing.append("PAGINATION_TOKEN_KEY")

        if missing:
            raise RuntimeError(
                "Missing required production settings: " + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict:
        def _has(v: str | None) -> bool:
            return bool(str(v or "").strip())

        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "log_level": self.log_level,
            "frontend": {
                "frontend_base_url": self.frontend_base_url,
                "frontend_url": self.frontend_url,
                "frontend_urls": self.frontend_urls,
            },
            "aws": {
                "aws_region": self.aws_region,
                "ddb_table_name": self.ddb_table_name,
                "ddb_endpoint_url": self.ddb_endpoint_url,
                "pagination_token_key_configured": _has(self.pagination_token_key),
            },
            "auth": {
                "cognito_user_pool_id": self.cognito_user_pool_id,
                "cognito_client_id": self.cognito_client_id,
                "cognito_region": self.cognito_region,
                "cognito_company_claim": self.cognito_company_claim,
            },
            "proposals": {
                "status_note_max_length": self.status_note_max_length,
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s


# Module-level singleton; tests monkeypatch attributes on it.
settings = get_settings()
