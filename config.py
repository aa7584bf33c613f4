import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_user_id: int,
        currency_label: str,
        alert_warning_threshold: Decimal,
        alert_info_threshold: Decimal,
        recurring_expiry_days: int,
        trend_months: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_user_id = default_user_id
        self.currency_label = currency_label
        self.alert_warning_threshold = alert_warning_threshold
        self.alert_info_threshold = alert_info_threshold
        self.recurring_expiry_days = recurring_expiry_days
        self.trend_months = trend_months
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "Indian/Antananarivo")
    default_user_id = int(os.getenv("FINANCE_DEFAULT_USER_ID", "1"))
    currency_label = os.getenv("FINANCE_CURRENCY_LABEL", "Ar")
    alert_warning_threshold = Decimal(
        os.getenv("FINANCE_ALERT_WARNING_THRESHOLD", "100000")
    )
    alert_info_threshold = Decimal(os.getenv("FINANCE_ALERT_INFO_THRESHOLD", "80000"))
    recurring_expiry_days = int(os.getenv("FINANCE_RECURRING_EXPIRY_DAYS", "30"))
    trend_months = int(os.getenv("FINANCE_TREND_MONTHS", "6"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_user_id=default_user_id,
        currency_label=currency_label,
        alert_warning_threshold=alert_warning_threshold,
        alert_info_threshold=alert_info_threshold,
        recurring_expiry_days=recurring_expiry_days,
        trend_months=trend_months,
        log_level=log_level,
    )
