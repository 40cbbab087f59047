"""
Portfolio Tracker 後端設定模組

使用 Pydantic Settings 管理環境變數，自動驗證型別與預設值。
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """應用程式設定，透過環境變數或 .env 載入"""

    # === 應用程式 ===
    app_env: Literal["development", "production", "testing"] = "development"
    app_name: str = "Portfolio Tracker API"
    app_version: str = "0.1.0"
    debug: bool = True

    # === 安全性 ===
    # Token 由外部身分服務簽發，本服務只負責驗證
    secret_key: str = "dev-secret-change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24  # Token 有效期（分鐘）
    admin_emails: str = "admin@example.com"  # 逗號分隔的管理員 Email 清單

    # === 資料庫 ===
    # 預設使用 SQLite（開發模式），生產環境切換為 PostgreSQL
    database_url: str = "sqlite+aiosqlite:///./portfolio_tracker.db"

    # === CORS ===
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # === 持倉成本 ===
    # 加碼既有持倉時的名稱處理：latest = 以最新輸入覆蓋，keep = 保留原名稱
    merge_name_policy: Literal["latest", "keep"] = "latest"

    # 帳本回放與持倉欄位比對的容許誤差
    ledger_quantity_tolerance: Decimal = Decimal("0.00000001")
    ledger_cost_tolerance: Decimal = Decimal("0.0001")
    ledger_amount_tolerance: Decimal = Decimal("0.01")

    # === 交易統計 ===
    recent_activity_days: int = 7

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def admin_email_list(self) -> list[str]:
        """回傳管理員 Email 清單"""
        if not self.admin_emails:
            return []
        return [e.strip() for e in self.admin_emails.split(",")]

    @property
    def use_sqlite(self) -> bool:
        """判斷是否使用 SQLite（開發模式）"""
        return "sqlite" in self.database_url


@lru_cache
def get_settings() -> Settings:
    """取得快取的設定實例"""
    return Settings()
