"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Jira Product Discovery (source store)
    jpd_base_url: str = ""
    jpd_email: str = ""
    jpd_api_key: str = ""
    # Used for field validation and issue creation when the JQL has no `project = KEY`.
    jpd_project_key: str | None = None

    # GitLab (target store)
    gitlab_url: str = "https://gitlab.com"
    gitlab_token: str = ""
    gitlab_project: str = ""

    # Sync
    sync_config_path: str = "config/sync.yaml"
    # Upper bound on source issues fetched per pass.
    sync_limit: int = 500
    dry_run: bool = False

    # Server (webhook receiver + poll scheduler)
    host: str = "0.0.0.0"
    port: int = 8000
    # When set, POST /webhook/* must carry a matching X-Webhook-Secret header.
    webhook_secret: str | None = None

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
