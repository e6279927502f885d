from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    """Centralized application settings.

    This keeps environment-variable handling in one place so other modules can
    depend on strongly-typed attributes instead of calling os.getenv
    directly.
    """

    # Speech-to-text backend selection: "demo" (default) or "openai".
    asr_backend: str = os.getenv("ASR_BACKEND", "demo")

    # AI completion backend selection: "demo" (default) or "openai".
    completion_backend: str = os.getenv("COMPLETION_BACKEND", "demo")

    # Fax carrier backend selection: "demo" (default) or "twilio".
    fax_backend: str = os.getenv("FAX_BACKEND", "demo")

    # Optional database configuration for SQL-backed repositories.
    database_url: Optional[str] = os.getenv("DATABASE_URL")
    use_sql_repos: bool = os.getenv("USE_SQL_REPOS", "false").lower() == "true"

    # Optional settings for external providers.
    openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
    llm_model: str = os.getenv("LLM_MODEL", "gpt-4.1-mini")
    transcription_model: str = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
    llm_timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))

    # Twilio fax carrier credentials. Only read when FAX_BACKEND=twilio.
    twilio_account_sid: Optional[str] = os.getenv("TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = os.getenv("TWILIO_AUTH_TOKEN")
    twilio_fax_number: Optional[str] = os.getenv("TWILIO_FAX_NUMBER")
    twilio_api_base_url: str = os.getenv("TWILIO_API_BASE_URL", "https://fax.twilio.com/v1")
    # Public URL the carrier should POST status updates to
    # (e.g. "https://emr.example.com/api/v1/fax/webhook").
    fax_status_callback_url: Optional[str] = os.getenv("FAX_STATUS_CALLBACK_URL")
    fax_timeout_seconds: float = float(os.getenv("FAX_TIMEOUT_SECONDS", "15"))

    # Basic API authentication configuration.
    # When ENABLE_API_AUTH=true, protected endpoints require either a valid
    # API key or a bearer session token issued by the identity provider.
    enable_api_auth: bool = os.getenv("ENABLE_API_AUTH", "false").lower() == "true"
    # Comma-separated list of allowed API keys when auth is enabled.
    api_keys: Optional[str] = os.getenv("API_KEYS")
    # Lifetime of bearer sessions issued by /auth/sign-in.
    session_ttl_minutes: int = int(os.getenv("SESSION_TTL_MINUTES", "720"))
    # Demo identity accounts, comma-separated "email:password:organization[:role]".
    demo_users: Optional[str] = os.getenv("DEMO_USERS")

    # Request size limits (in bytes).
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    # Days between assignment and the default due date of an assigned form.
    default_assignment_due_days: int = int(os.getenv("DEFAULT_ASSIGNMENT_DUE_DAYS", "7"))

    # CORS configuration: comma-separated origins (e.g. "https://app.example.com,https://admin.example.com").
    # Default is "*" (allow all) which is acceptable for local development but
    # should be tightened in production.
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
