from __future__ import annotations
import logging
import os
import pathlib

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from lms_telemetry.core.config import settings
from lms_telemetry.models import TELEMETRY_TABLES

_log = logging.getLogger(__name__)


def _alembic_config() -> Config:
    # package-embedded alembic.ini first (works for installed wheels), then
    # LMS_TELEMETRY_ALEMBIC_INI, then the working directory
    candidates = [pathlib.Path(__file__).resolve().parent.parent / 'alembic.ini']
    env_ini = os.getenv('LMS_TELEMETRY_ALEMBIC_INI')
    if env_ini:
        candidates.append(pathlib.Path(env_ini))
    candidates.append(pathlib.Path.cwd() / 'alembic.ini')
    cfg_path = next((p for p in candidates if p.exists() and p.is_file()), None)
    if not cfg_path:
        raise RuntimeError('alembic.ini not found; cannot run migrations')

    cfg = Config(str(cfg_path))
    # script_location is resolved next to the ini so packaging cannot move it
    cfg.set_main_option('script_location', str(cfg_path.parent / 'alembic'))
    cfg.set_main_option('sqlalchemy.url', settings.database_url)
    return cfg


def run_migrations() -> None:
    """Bring the telemetry tables to the head revision.

    States handled:
    1. No telemetry tables: ``upgrade head``.
    2. Telemetry tables exist but no ``alembic_version``: tables were created
       by ``create_all`` earlier, stamp head then upgrade.
    3. ``alembic_version`` present: normal ``upgrade head``.

    Domain tables (users, courses, ...) in a shared database are left alone.
    """
    cfg = _alembic_config()
    engine = create_engine(settings.database_url)
    try:
        existing = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()

    has_version = 'alembic_version' in existing
    has_telemetry = bool(TELEMETRY_TABLES & existing)
    if has_version:
        _log.info('migrations: state=MANAGED -> upgrade head')
    elif has_telemetry:
        _log.info('migrations: state=UNMANAGED -> stamp head')
        command.stamp(cfg, 'head')
    else:
        _log.info('migrations: state=EMPTY -> upgrade head')
    command.upgrade(cfg, 'head')

    engine = create_engine(settings.database_url)
    try:
        missing = TELEMETRY_TABLES - set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    if missing:
        raise RuntimeError(f'missing expected tables after migration: {sorted(missing)}')
    _log.info('migrations: complete')
