"""Run the signaling server with ``python -m watchsync``."""
from __future__ import annotations

import uvicorn

from .core.config import settings
from .core.logging import setup_logging


def main() -> None:
    setup_logging()
    uvicorn.run(
        "watchsync.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
