#!/usr/bin/env python
"""
Run the gateway with uvicorn.

Usage:
    python main.py
    # or
    uvicorn idk_gateway.main:app --host 0.0.0.0 --port 8000

Debug mode (APP_DEBUG=true) runs one worker and, with DEV_AUTO_RELOAD=true,
reloads on changes under idk_gateway/.
"""

import sys
from pathlib import Path

backend_dir = Path(__file__).parent.resolve()
sys.path.insert(0, str(backend_dir))

import structlog
import uvicorn

from idk_gateway.core.config import settings

logger = structlog.get_logger(__name__)


def main() -> None:
    debug = settings.app.app_debug
    reload = debug and settings.dev_auto_reload
    workers = 1 if debug else settings.app.api_workers

    logger.info(
        "Starting IDK Gateway",
        env=settings.app.app_env,
        host=settings.app.api_host,
        port=settings.app.api_port,
        workers=workers,
        reload=reload,
        default_provider=settings.gateway.default_provider,
    )

    uvicorn.run(
        "idk_gateway.main:app",
        host=settings.app.api_host,
        port=settings.app.api_port,
        reload=reload,
        workers=workers,
        log_level=settings.log.level.lower(),
        access_log=settings.log.requests,
        reload_dirs=[str(backend_dir / "idk_gateway")] if reload else None,
    )


if __name__ == "__main__":
    main()
