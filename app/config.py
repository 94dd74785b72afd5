import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @staticmethod
    def _get_bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None:
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}

    @property
    def APP_ENV(self) -> str:
        return os.getenv("APP_ENV", "development").strip().lower()

    @property
    def IS_PRODUCTION(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def BASE_URL(self) -> str:
        return os.getenv("BASE_URL", "http://localhost:8000")

    @property
    def FRONTEND_URL(self) -> str:
        return os.getenv("FRONTEND_URL", "http://localhost:5173")

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 10)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", "change-me-in-production")

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def PAYMEE_ENV(self) -> str:
        return os.getenv("PAYMEE_ENV", "sandbox").strip().lower()

    @property
    def PAYMEE_MODE(self) -> str:
        return os.getenv("PAYMEE_MODE", "dynamic").strip().lower()

    @property
    def PAYMEE_API_KEY(self) -> str:
        return os.getenv("PAYMEE_API_KEY", "")

    @property
    def PAYMEE_WEBHOOK_URL(self) -> str:
        return os.getenv("PAYMEE_WEBHOOK_URL", "")

    @property
    def PAYMEE_RETURN_URL(self) -> str:
        return os.getenv("PAYMEE_RETURN_URL", "")

    @property
    def PAYMEE_CANCEL_URL(self) -> str:
        return os.getenv("PAYMEE_CANCEL_URL", "")

    @property
    def PAYMEE_TIMEOUT_SECONDS(self) -> int:
        return self._get_int("PAYMEE_TIMEOUT_SECONDS", 15)

    @property
    def PAYMENT_TIMEOUT_MINUTES(self) -> int:
        return self._get_int("PAYMENT_TIMEOUT_MINUTES", 30)

    @property
    def RECONCILIATION_INTERVAL_MINUTES(self) -> int:
        return self._get_int("RECONCILIATION_INTERVAL_MINUTES", 15)

    @property
    def RECONCILIATION_INITIAL_DELAY_SECONDS(self) -> int:
        return self._get_int("RECONCILIATION_INITIAL_DELAY_SECONDS", 10)

    @property
    def RECONCILIATION_ENABLED(self) -> bool:
        return self._get_bool("RECONCILIATION_ENABLED", True)

    @property
    def SMTP_HOST(self) -> str:
        return os.getenv("SMTP_HOST", "")

    @property
    def SMTP_PORT(self) -> int:
        return self._get_int("SMTP_PORT", 587)

    @property
    def SMTP_USER(self) -> str:
        return os.getenv("SMTP_USER", "")

    @property
    def SMTP_PASSWORD(self) -> str:
        return os.getenv("SMTP_PASSWORD", "")

    @property
    def SMTP_USE_TLS(self) -> bool:
        return self._get_bool("SMTP_USE_TLS", True)

    @property
    def SMTP_FROM_EMAIL(self) -> str:
        return os.getenv("SMTP_FROM_EMAIL", "")

    @property
    def SMTP_FROM_NAME(self) -> str:
        return os.getenv("SMTP_FROM_NAME", "Shop")

    @property
    def META_PIXEL_ID(self) -> str:
        return os.getenv("META_PIXEL_ID", "")

    @property
    def META_ACCESS_TOKEN(self) -> str:
        return os.getenv("META_ACCESS_TOKEN", "")

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")


settings = Settings()

# Validate critical settings
if settings.JWT_SECRET == "change-me-in-production":
    import warnings
    warnings.warn("JWT_SECRET is using default value. Change it in production!", UserWarning)
