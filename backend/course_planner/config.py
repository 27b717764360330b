from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


PACKAGE_ROOT = Path(__file__).parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_prefix="PLANNER_", env_file=str(PROJECT_ROOT / ".env"), extra="ignore")

    database_url: str = "sqlite:///./course_planner.db"
    # Credential that reaches every owner's rows; only the share routes use it.
    service_role_database_url: str = ""

    session_secret: str = "change-me"
    session_max_age_seconds: int = 60 * 60 * 24 * 7

    public_base_url: str = "http://localhost:5173"
    catalog_path: str = str(PACKAGE_ROOT / "data" / "catalog.json")
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"

    @property
    def effective_service_role_url(self) -> str:
        return self.service_role_database_url or self.database_url


settings = Settings()
