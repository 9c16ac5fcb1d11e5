from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="APP_ENV")
    port: int = Field(default=5000, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Public URLs (recovery links point at the web app, avatar URLs at the API)
    app_web_url: str = Field(default="http://localhost:8080", validation_alias="APP_WEB_URL")
    app_api_url: str = Field(default="http://localhost:5000", validation_alias="APP_API_URL")
    # Extra comma-separated CORS origins on top of APP_WEB_URL.
    cors_origins: str | None = Field(default=None, validation_alias="CORS_ORIGINS")

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    # App-layer attempts per DynamoDB call. 1 means failures surface immediately.
    ddb_max_attempts: int = Field(default=1, validation_alias="DDB_MAX_ATTEMPTS")

    # Tokens
    jwt_secret: str | None = Field(default=None, validation_alias="JWT_SECRET")
    jwt_login_expires_in: int = Field(default=24 * 60 * 60, validation_alias="JWT_LOGIN_EXPIRES_IN")
    recovery_token_ttl_seconds: int = Field(
        default=24 * 60 * 60, validation_alias="RECOVERY_TOKEN_TTL_SECONDS"
    )
    # Legacy behavior: answer "user.notFound" for unknown recovery emails.
    recovery_reveal_unknown_email: bool = Field(
        default=False, validation_alias="RECOVERY_REVEAL_UNKNOWN_EMAIL"
    )
    session_cache_ttl_seconds: int = Field(default=30, validation_alias="SESSION_CACHE_TTL_SECONDS")

    # Credentials
    password_min_length: int = Field(default=8, validation_alias="PASSWORD_MIN_LENGTH")
    bcrypt_rounds: int = Field(default=10, validation_alias="BCRYPT_ROUNDS")
    admin_role: str = Field(default="admin", validation_alias="ADMIN_ROLE")

    # Email (SES v2)
    email_from: str | None = Field(default=None, validation_alias="EMAIL_FROM")

    # Media
    media_root: str = Field(default="media", validation_alias="MEDIA_ROOT")
    avatar_max_bytes: int = Field(default=5 * 1024 * 1024, validation_alias="AVATAR_MAX_BYTES")
    avatar_allowed_extensions: str = Field(
        default=".png,.jpg,.jpeg,.gif,.webp", validation_alias="AVATAR_ALLOWED_EXTENSIONS"
    )

    # Groups
    # DynamoDB caps TransactWriteItems at 100 actions.
    group_sync_transaction_limit: int = Field(
        default=100, validation_alias="GROUP_SYNC_TRANSACTION_LIMIT"
    )

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
        if v in ("test", "testing"):
            return "test"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def is_development(self) -> bool:
        return self.normalized_environment == "development"

    @property
    def avatar_extensions(self) -> set[str]:
        out: set[str] = set()
        for raw in str(self.avatar_allowed_extensions or "").split(","):
            ext = raw.strip().lower()
            if not ext:
                continue
            out.add(ext if ext.startswith(".") else f".{ext}")
        return out

    @property
    def signing_secret(self) -> str:
        # Signs access tokens, recovery tokens and cursors: no fallback in any environment.
        secret = str(self.jwt_secret or "").strip()
        if not secret:
            raise RuntimeError("JWT_SECRET is required to sign tokens")
        return secret

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Development/test are allowed to run with partial config for local work,
        but production must be fully configured.
        """
        if not self.is_production:
            return

        missing: list[str] = []
        if not self.jwt_secret:
            missing.append("JWT_SECRET")
        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")
        if not self.email_from:
            missing.append("EMAIL_FROM")

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict[str, object]:
        """
        A redacted representation safe for structured logs / diagnostics.
        """
        def _has(v: object) -> bool:
            return v is not None and str(v).strip() != ""

        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "urls": {
                "app_web_url": self.app_web_url,
                "app_api_url": self.app_api_url,
                "cors_origins": self.cors_origins,
            },
            "aws": {
                "aws_region": self.aws_region,
                "ddb_table_name": self.ddb_table_name,
                "ddb_max_attempts": self.ddb_max_attempts,
            },
            "auth": {
                "jwt_secret_configured": _has(self.jwt_secret),
                "jwt_login_expires_in": self.jwt_login_expires_in,
                "recovery_token_ttl_seconds": self.recovery_token_ttl_seconds,
                "recovery_reveal_unknown_email": bool(self.recovery_reveal_unknown_email),
                "password_min_length": self.password_min_length,
                "bcrypt_rounds": self.bcrypt_rounds,
            },
            "email": {"email_from_configured": _has(self.email_from)},
            "media": {
                "media_root": self.media_root,
                "avatar_max_bytes": self.avatar_max_bytes,
                "avatar_allowed_extensions": sorted(self.avatar_extensions),
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s
