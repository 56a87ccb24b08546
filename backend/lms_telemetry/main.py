from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from lms_telemetry.core.config import settings
from lms_telemetry.core.logging_config import configure_logging
from lms_telemetry.api import analytics as analytics_router
from lms_telemetry.api import interactions as interactions_router
from lms_telemetry.api import version as version_router
from lms_telemetry.db.session import engine, Base
from lms_telemetry import models  # noqa: F401  registers the mappings on Base.metadata

_log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and make sure the telemetry tables exist before serving."""
    configure_logging(settings.log_level)
    for line in settings.diagnostics or []:
        _log.debug('config: %s', line)

    if settings.run_migrations:
        from lms_telemetry.core.migrations import run_migrations
        run_migrations()
    else:
        tables = [t for name, t in Base.metadata.tables.items() if name in models.TELEMETRY_TABLES]
        Base.metadata.create_all(bind=engine, tables=tables)
    _log.info('%s %s ready (db=%s)', settings.app_name, settings.version, engine.url.render_as_string(hide_password=True))

    yield


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _log.warning('validation error url=%s errors=%s', request.url, exc.errors())
    return JSONResponse(status_code=422, content={'detail': jsonable_encoder(exc.errors())})


# Routers
app.include_router(interactions_router.router, prefix=settings.api_prefix)
app.include_router(analytics_router.router, prefix=settings.api_prefix)
app.include_router(version_router.router, prefix=settings.api_prefix)

# The collector runs on the LMS front-end origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.get('/')
async def root():
    return {'status': 'ok', 'app': settings.app_name}
