import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Project root, .env is read from here when it exists
root = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=root / ".env")


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, default))


def _float_env(name: str, default: float) -> float:
    return float(os.getenv(name, default))


def _bool_env(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    environment: str = "development"
    port: int = 5001
    frontend_url: str = "http://localhost:8080"
    log_level: str = "INFO"

    max_code_size: int = 100_000
    max_stdin_size: int = 10_000
    max_test_cases: int = 50
    max_body_size: int = 100 * 1024

    jwt_secret: str = "your-super-secret-jwt-key-change-in-production"
    jwt_algorithm: str = "HS256"

    max_daily_executions: int = 1000
    max_monthly_executions: int = 30000
    max_total_executions: int = 100000
    quota_warning_threshold: float = 0.9

    judge0_url: str = "https://judge0-ce.p.rapidapi.com"
    judge0_api_key: str | None = None
    judge0_host: str | None = None
    judge0_timeout: float = 30.0
    max_concurrent_cases: int = 4

    database_url: str = "sqlite+aiosqlite:///./executions.db"
    kafka_enabled: bool = False
    kafka_broker_url: str = "localhost:9092"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_settings() -> Settings:
    return Settings(
        environment=os.getenv("ENVIRONMENT", os.getenv("NODE_ENV", "development")),
        port=_int_env("PORT", 5001),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:8080"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        max_code_size=_int_env("MAX_CODE_SIZE", 100_000),
        max_stdin_size=_int_env("MAX_STDIN_SIZE", 10_000),
        max_test_cases=_int_env("MAX_TEST_CASES", 50),
        max_body_size=_int_env("MAX_BODY_SIZE", 100 * 1024),
        jwt_secret=os.getenv("JWT_SECRET", Settings.jwt_secret),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        max_daily_executions=_int_env("MAX_DAILY_EXECUTIONS", 1000),
        max_monthly_executions=_int_env("MAX_MONTHLY_EXECUTIONS", 30000),
        max_total_executions=_int_env("MAX_TOTAL_EXECUTIONS", 100000),
        quota_warning_threshold=_float_env("QUOTA_WARNING_THRESHOLD", 0.9),
        judge0_url=os.getenv("JUDGE0_URL", Settings.judge0_url).rstrip("/"),
        judge0_api_key=os.getenv("JUDGE0_API_KEY") or None,
        judge0_host=os.getenv("JUDGE0_HOST") or None,
        judge0_timeout=_float_env("JUDGE0_TIMEOUT", 30.0),
        max_concurrent_cases=_int_env("MAX_CONCURRENT_CASES", 4),
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        kafka_enabled=_bool_env("KAFKA_ENABLED"),
        kafka_broker_url=os.getenv("KAFKA_BROKER_URL", "localhost:9092"),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()


def setup_logging(level: str | None = None):
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def get_cors_settings(settings: Settings | None = None):
    settings = settings or get_settings()
    return {
        "allow_origins": [settings.frontend_url],
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization", "X-Requested-With"],
        "expose_headers": ["RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset"],
    }
