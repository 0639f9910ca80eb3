import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_TEST_ID = 'ielts-academic-01'


def _env(name, default=None):
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name, default):
    value = _env(name)
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at startup."""

    tests_root: str = 'data/tests'
    default_test_id: str = DEFAULT_TEST_ID
    export_dir: str = 'data/exports'
    db_host: str | None = None
    db_port: int = 3306
    db_user: str = 'root'
    db_password: str = ''
    db_name: str = 'ielts_tryout'
    db_pool_size: int = 5
    log_level: str = 'INFO'
    app_host: str = '0.0.0.0'
    app_port: int = 8000

    @property
    def database_configured(self):
        return bool(self.db_host)


def load_settings():
    """Build Settings from the environment (and a .env file when present)."""
    load_dotenv()
    return Settings(
        tests_root=_env('TESTS_ROOT', 'data/tests'),
        default_test_id=_env('DEFAULT_TEST_ID', DEFAULT_TEST_ID),
        export_dir=_env('EXPORT_DIR', 'data/exports'),
        db_host=_env('DB_HOST'),
        db_port=_env_int('DB_PORT', 3306),
        db_user=_env('DB_USER', 'root'),
        db_password=_env('DB_PASSWORD', ''),
        db_name=_env('DB_NAME', 'ielts_tryout'),
        db_pool_size=_env_int('DB_POOL_SIZE', 5),
        log_level=_env('LOG_LEVEL', 'INFO').upper(),
        app_host=_env('APP_HOST', '0.0.0.0'),
        app_port=_env_int('APP_PORT', 8000),
    )
