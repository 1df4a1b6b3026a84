from typing import Dict, List, Optional

from pydantic_settings import BaseSettings

SUPPORTED_SHEETS = ("Request", "Operator", "Revenue")


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tourdesk.db"

    # Google service account + spreadsheet ids
    google_service_account_email: str = ""
    google_private_key: str = ""
    google_sheet_id: str = ""
    sheet_id_request: str = ""
    sheet_id_operator: str = ""
    sheet_id_revenue: str = ""
    sheet_header_rows: int = 1

    # Shared secret presented by the scheduler as a bearer token
    cron_secret: str = ""

    # Write-back queue
    writeback_batch_size: int = 25
    writeback_max_batches: int = 4
    stuck_timeout_minutes: int = 10
    queue_max_retries: int = 3
    completed_retention_days: int = 7

    # Scheduler
    writeback_interval_minutes: int = 5
    maintenance_day_of_week: str = "sun"
    maintenance_hour: int = 3
    pull_sync_interval_minutes: int = 0  # 0 disables scheduled pull-sync
    pull_sync_sheets: List[str] = ["Request", "Operator", "Revenue"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def sheet_id_for(self, sheet_name: str) -> str:
        """Spreadsheet id for a tab, falling back to the shared GOOGLE_SHEET_ID."""
        override = getattr(self, f"sheet_id_{sheet_name.lower()}", "")
        return override or self.google_sheet_id

    def has_credentials(self) -> bool:
        return bool(self.google_service_account_email and self.google_private_key)

    def is_sheets_configured(self) -> bool:
        return self.has_credentials() and any(
            self.sheet_id_for(name) for name in SUPPORTED_SHEETS
        )

    def sheet_config_status(self) -> Dict[str, bool]:
        return {name: bool(self.sheet_id_for(name)) for name in SUPPORTED_SHEETS}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
