"""Application configuration"""

from pydantic_settings import BaseSettings


class EngineConfig(BaseSettings):
    """Engine settings, constructed once at startup and passed to every component"""

    # Database (durable state + audit log)
    database_url: str = "sqlite:///./deskbridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "INFO"

    # ClickUp
    clickup_token: str | None = None
    clickup_api_url: str = "https://api.clickup.com/api/v2"
    # Ops reasons prefixed "fwd" land in the forward list, "rev" in the reverse list.
    clickup_list_forward: str = "901811203589"
    clickup_list_reverse: str = "901811777405"
    assignee_email: str | None = None
    clickup_reopen_status: str = "REOPENED"

    # Zendesk
    zendesk_email: str | None = None
    zendesk_api_token: str | None = None
    # Used when a wrapped ticket payload carries neither an account nor a ticket URL.
    zendesk_default_subdomain: str = "shopaleena"

    # State lifetimes
    cache_ttl_seconds: int = 6 * 60 * 60
    created_flag_ttl_seconds: int = 24 * 60 * 60
    # A v2 delivery whose created/updated timestamps are this close is treated as "taskCreated".
    v2_created_window_ms: int = 5000

    # Outbound HTTP
    http_timeout_seconds: float = 30.0

    # Inbound shared secret (optional). When set, webhook POSTs and the operator API
    # must present it via X-Bridge-Key or ?key=.
    shared_key: str | None = None

    # Maintenance
    maintenance_interval_minutes: int = 30
    audit_retention_days: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def task_lists(self) -> list[str]:
        return [self.clickup_list_forward, self.clickup_list_reverse]


settings = EngineConfig()
