"""Run the service with uvicorn: `python -m lingosub` or the `lingosub` script."""
from __future__ import annotations

import uvicorn

from lingosub.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "lingosub.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
