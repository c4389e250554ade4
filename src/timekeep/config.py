from pydantic_settings import BaseSettings

# Literal phrase operators must set alongside TIMEKEEP_FORCE_BOOTSTRAP to arm the break-glass mode
FORCE_BOOTSTRAP_ACKNOWLEDGEMENT = "I-UNDERSTAND-SESSION-CHECKS-ARE-DISABLED"


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    cors_origins: list[str] = []

    # Identity provider that issues and signs bearer credentials
    identity_issuer: str  # Expected "iss" claim, e.g. https://cognito-idp.us-east-1.amazonaws.com/<pool-id>
    identity_jwks_url: str | None = None  # Defaults to {identity_issuer}/.well-known/jwks.json
    identity_audience: str | None = None  # Checked only when set
    identity_admin_url: str | None = None  # Admin API used for credential verification and password updates
    identity_admin_token: str = ""
    jwks_cache_max_entries: int = 5
    jwks_cache_ttl_seconds: int = 600
    http_timeout_seconds: float = 5.0

    # Break-glass: lets any valid token create a session, bypassing all session checks
    force_bootstrap: bool = False
    force_bootstrap_acknowledgement: str = ""

    # Session housekeeping
    session_ttl_grace_hours: int = 24  # Store TTL reaps a record this long after expires_at
    sweep_batch_size: int = 25
    sweep_batch_delay_seconds: float = 0.1
    sweep_page_size: int = 100
    orphan_session_days: int = 30

    geolocation_url: str | None = None  # e.g. http://ip-api.com/json, disabled when unset

    # Password policy
    password_history_size: int = 5
    password_changes_per_day: int = 3

    model_config = {
        "env_file": [".env"],
        "env_prefix": "TIMEKEEP_",
        "extra": "ignore",
    }

    @property
    def jwks_url(self) -> str:
        if self.identity_jwks_url:
            return self.identity_jwks_url
        return f"{self.identity_issuer.rstrip('/')}/.well-known/jwks.json"

    @property
    def force_bootstrap_armed(self) -> bool:
        """Break-glass is active only when the flag and the acknowledgement phrase are both set."""
        return self.force_bootstrap and self.force_bootstrap_acknowledgement == FORCE_BOOTSTRAP_ACKNOWLEDGEMENT
