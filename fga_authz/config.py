"""
Authorization layer configuration.

Settings are read from ``FGA_``-prefixed environment variables (or a ``.env``
file) once at startup. Missing required values fail fast instead of falling
back to demo credentials.
"""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RELATIONS: Dict[str, List[str]] = {
    "document": ["viewer", "editor", "owner"],
    "project": ["member", "manager", "owner"],
    "calendar": ["reader", "writer"],
}

# Conservative table used while the authorization service is unreachable.
DEFAULT_FALLBACK_RULES: List[str] = [
    "document:project-plan#viewer",
    "document:requirements#viewer",
    "document:requirements#editor",
    "document:architecture#viewer",
    "project:alpha-release#member",
    "calendar:team-calendar#reader",
]

# Only honoured in development with the admin marker heuristic switched on.
DEFAULT_ADMIN_FALLBACK_RULES: List[str] = [
    "document:project-plan#editor",
    "document:project-plan#owner",
    "document:requirements#owner",
    "document:architecture#editor",
    "project:alpha-release#manager",
    "project:alpha-release#owner",
    "calendar:team-calendar#writer",
]

ENVIRONMENTS = ("development", "test", "production")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class AuthorizationSettings(BaseSettings):
    """Settings for the OpenFGA-backed authorization layer."""

    model_config = SettingsConfigDict(
        env_prefix="FGA_",
        env_file=".env",
        extra="ignore",
        protected_namespaces=("settings_",),
    )

    environment: str = "development"

    # OpenFGA connection
    api_url: str = "https://api.fga.dev"
    store_id: str
    model_id: Optional[str] = None
    client_id: str
    client_secret: str
    api_token_issuer: Optional[str] = None
    api_audience: Optional[str] = None
    principal_type: str = "user"

    # Remote call bounds
    remote_timeout_seconds: float = 3.0
    remote_max_retries: int = Field(default=2, ge=0, le=5)
    remote_retry_backoff_seconds: float = 0.05
    decision_timeout_seconds: Optional[float] = None

    # Permission cache
    cache_ttl_seconds: float = 10.0
    deny_cache_ttl_seconds: float = 5.0
    cache_max_size: int = Field(default=10000, gt=0)

    # Approval workflow
    approval_timeout_seconds: float = 900.0

    # Relations valid per resource type
    relations: Dict[str, List[str]] = Field(default_factory=lambda: dict(DEFAULT_RELATIONS))

    # Fallback policy table
    fallback_rules: List[str] = Field(default_factory=lambda: list(DEFAULT_FALLBACK_RULES))
    admin_fallback_rules: List[str] = Field(default_factory=lambda: list(DEFAULT_ADMIN_FALLBACK_RULES))
    dev_admin_marker_enabled: bool = False
    admin_marker: str = "admin"

    # Logging
    log_level: str = "INFO"
    audit_logger_name: str = "fga_authz.audit"

    @field_validator("environment")
    @classmethod
    def environment_must_be_known(cls, v):
        v = v.lower()
        if v not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {', '.join(ENVIRONMENTS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v):
        v = v.upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return v

    @field_validator("api_url")
    @classmethod
    def api_url_must_be_http(cls, v):
        if not v.startswith(("https://", "http://")):
            raise ValueError("api_url must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("store_id", "client_id", "client_secret")
    @classmethod
    def required_values_not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator(
        "remote_timeout_seconds",
        "cache_ttl_seconds",
        "deny_cache_ttl_seconds",
        "approval_timeout_seconds",
    )
    @classmethod
    def durations_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("decision_timeout_seconds")
    @classmethod
    def decision_timeout_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("fallback_rules", "admin_fallback_rules")
    @classmethod
    def rules_must_be_well_formed(cls, v):
        for rule in v:
            resource, sep, relation = rule.rpartition("#")
            if not sep or not relation or ":" not in resource:
                raise ValueError(f"fallback rule {rule!r} must look like 'type:id#relation'")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def admin_marker_heuristic_active(self) -> bool:
        """The admin marker shortcut is a development convenience only."""
        return self.dev_admin_marker_enabled and not self.is_production


@lru_cache()
def get_settings() -> AuthorizationSettings:
    """Get cached authorization settings"""
    return AuthorizationSettings()
