import uvicorn

from lms_telemetry.core.config import settings


def main():
    # access log stays on; logging_config filters the ingest POST noise
    uvicorn.run(
        'lms_telemetry.main:app',
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == '__main__':
    main()
