from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List

PLACEHOLDER_MARKERS = ("your-project", "your_project", "example.supabase.co", "<project>")
MIN_ANON_KEY_LENGTH = 100


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for privileged handlers (webhook, reports, invites)

    # WhatsApp Business (Meta Graph API)
    whatsapp_phone_id: Optional[str] = None
    whatsapp_access_token: Optional[str] = None
    whatsapp_app_secret: Optional[str] = None
    whatsapp_verify_token: Optional[str] = None
    whatsapp_graph_url: str = "https://graph.facebook.com/v21.0"

    # AWS S3 for generated report / statement PDFs (will read from uppercase env vars automatically)
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"
    s3_bucket_name: Optional[str] = None

    # Resilience
    request_timeout_seconds: float = 15.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    slow_query_seconds: float = 20.0
    connectivity_timeout_seconds: float = 5.0

    # Outbound messaging limiter (per institution)
    messaging_rate_limit_requests: int = 100
    messaging_rate_limit_window_seconds: int = 60

    # App
    app_name: str = "ibimina-admin-api"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"
    default_currency: str = "RWF"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whatsapp_phone_id and self.whatsapp_access_token)

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


def validate_settings(config: Settings) -> List[str]:
    """Return a list of configuration problems; empty when the app can boot."""
    problems = []
    if not config.supabase_url:
        problems.append("SUPABASE_URL is not set")
    else:
        url = config.supabase_url.lower()
        if not url.startswith("https://"):
            problems.append("SUPABASE_URL must use https://")
        if any(marker in url for marker in PLACEHOLDER_MARKERS):
            problems.append("SUPABASE_URL still contains a placeholder value")
    if not config.supabase_key:
        problems.append("SUPABASE_KEY is not set")
    elif len(config.supabase_key) < MIN_ANON_KEY_LENGTH:
        problems.append("SUPABASE_KEY looks truncated (expected a JWT anon key)")
    if config.is_production and not config.supabase_service_role_key:
        problems.append("SUPABASE_SERVICE_ROLE_KEY is required in production")
    return problems


settings = Settings()
