from __future__ import annotations

import logging

import uvicorn

from app.config import settings


def _quiet_logging() -> None:
    # Root defaults
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
    )

    # Quiet the usual offenders
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def main() -> None:
    _quiet_logging()
    log = logging.getLogger(__name__)
    log.info("Starting LeadSync (env=%s, sources=%s)", settings.ENV, [s.source_id for s in settings.SYNC_SOURCES])

    # log_config=None keeps the logging setup above instead of uvicorn's own
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":
    main()
