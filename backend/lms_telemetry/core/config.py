"""Central configuration.

Values come from the process environment, optionally seeded from a
``config.env`` file (python-dotenv) so local deployments can keep the admin
key and database credentials out of compose files.

Env vars:
  LMS_TELEMETRY_CONFIG_FILE     - explicit config.env path (checked first)
  LMS_TELEMETRY_DATA_DIR        - directory for writable application data (created)
  DATABASE_URL                  - SQLAlchemy URL of the shared LMS database;
                                  defaults to a sqlite file in the data dir
  LMS_TELEMETRY_LOG_LEVEL       - DEBUG, INFO, WARNING, ERROR, CRITICAL
  LMS_TELEMETRY_ADMIN_API_KEY   - shared key for the operator endpoints (unset = open)
  LMS_TELEMETRY_RUN_MIGRATIONS  - run alembic on startup instead of create_all
  LMS_TELEMETRY_DB_ECHO         - log every SQL statement (SQLAlchemy echo)
  LMS_TELEMETRY_HOST, LMS_TELEMETRY_PORT - bind address of `python -m lms_telemetry`
  LMS_TELEMETRY_EXPORT_ROW_CAP  - row limit of the CSV export
  LMS_TELEMETRY_CORS_ORIGINS    - comma separated origins allowed to post events ("*" by default)
  LMS_TELEMETRY_VERSION         - override reported version
"""
from pathlib import Path
import os

from dotenv import load_dotenv
from pydantic import BaseModel

from lms_telemetry import __version__

_diagnostics: list[str] = []


def _load_config_env() -> None:
    candidates = []
    override = os.getenv('LMS_TELEMETRY_CONFIG_FILE')
    if override:
        candidates.append(Path(override))
    # working directory first: that is where compose or the user starts the process
    candidates.append(Path.cwd() / 'config.env')
    candidates.append(Path.cwd() / 'backend' / 'config.env')
    for p in candidates:
        if p.is_file():
            # real environment variables keep precedence over the file
            load_dotenv(str(p), override=False)
            _diagnostics.append(f"config_env={p}")
            return


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        _diagnostics.append(f"bad_int {name}={value!r} using {default}")
        return default


def _resolve_data_dir() -> Path:
    candidates: list[str] = []
    for c in (os.getenv('LMS_TELEMETRY_DATA_DIR'), str(Path.cwd() / 'data')):
        if c and c not in candidates:
            candidates.append(c)
    for cand in candidates:
        p = Path(cand)
        try:
            p.mkdir(parents=True, exist_ok=True)
        except OSError as e:  # pragma: no cover
            _diagnostics.append(f"candidate_failed path={p} err={e}")
            continue
        _diagnostics.append(f"selected_data_dir={p}")
        return p
    fallback = Path(__file__).resolve().parent.parent.parent / 'data'
    fallback.mkdir(parents=True, exist_ok=True)
    _diagnostics.append(f"fallback_package_dir={fallback}")
    return fallback


def _cors_origins() -> list[str]:
    raw = os.getenv('LMS_TELEMETRY_CORS_ORIGINS', '*')
    origins = [o.strip() for o in raw.split(',') if o.strip()]
    return origins or ['*']


_load_config_env()
data_dir = _resolve_data_dir()


class Settings(BaseModel):
    app_name: str = 'LMS Interaction Telemetry'
    database_url: str = os.getenv('DATABASE_URL') or f"sqlite:///{data_dir / 'telemetry.db'}"
    api_prefix: str = '/api'
    version: str = os.getenv('LMS_TELEMETRY_VERSION', __version__)
    data_dir: Path = data_dir
    # Logging level for the backend (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_level: str = os.getenv('LMS_TELEMETRY_LOG_LEVEL', 'INFO')
    admin_api_key: str | None = os.getenv('LMS_TELEMETRY_ADMIN_API_KEY') or None
    run_migrations: bool = _env_flag('LMS_TELEMETRY_RUN_MIGRATIONS')
    db_echo: bool = _env_flag('LMS_TELEMETRY_DB_ECHO')
    export_row_cap: int = _env_int('LMS_TELEMETRY_EXPORT_ROW_CAP', 10_000)
    cors_origins: list[str] = _cors_origins()
    host: str = os.getenv('LMS_TELEMETRY_HOST', '0.0.0.0')
    port: int = _env_int('LMS_TELEMETRY_PORT', 4153)
    diagnostics: list[str] | None = _diagnostics

settings = Settings()
