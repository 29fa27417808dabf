from __future__ import annotations

import logging


def configure_app_logging(level: str = "INFO") -> None:
    """
    Minimal logging configuration for this repo.

    Notes:
    - stdlib logging only; uvicorn already installs handlers, so this only sets levels.
    - `APP_LOG_LEVEL=DEBUG` also surfaces every authorization decision (app.security.evaluator).
    - The sweep job runs outside uvicorn and calls `logging.basicConfig` itself.
    """

    normalized = level.upper()
    logging.getLogger("app").setLevel(normalized)
    # Ensure child loggers under app.* inherit this level.
    logging.getLogger("app").propagate = True
