"""Process entrypoint: runs the pipeline and, when enabled, the REST facade."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Iterator

import uvicorn

from pumpfun_creator_tracker.api import create_app
from pumpfun_creator_tracker.config import Settings, get_settings
from pumpfun_creator_tracker.pipeline import Pipeline
from pumpfun_creator_tracker.storage.database import StoreUnavailable

logger = logging.getLogger("pumpfun_creator_tracker")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the pipeline."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


async def _run(settings: Settings) -> None:
    pipeline = Pipeline(settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, pipeline.request_stop)

    await pipeline.start()

    server: _EmbeddedServer | None = None
    serve_task: asyncio.Task[None] | None = None
    if settings.api.enabled:
        app = create_app(pipeline.db_manager, settings)
        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",
        )
        server = _EmbeddedServer(config)
        serve_task = asyncio.create_task(server.serve())
        logger.info("API listening on %s:%d", settings.api.host, settings.api.port)

    try:
        await pipeline.wait_closed()
    finally:
        logger.info("Shutdown requested")
        if server is not None and serve_task is not None:
            server.should_exit = True
            try:
                await serve_task
            except Exception as e:
                logger.warning("API server stopped with error: %s", e)
        await pipeline.stop()


def main() -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.get_logging_level(), format=LOG_FORMAT)

    logger.info("Configuration: %s", settings.redacted_summary())
    try:
        settings.validate_requirements()
    except ValueError as e:
        logger.critical("Invalid configuration: %s", e)
        return 2

    try:
        asyncio.run(_run(settings))
    except StoreUnavailable as e:
        logger.critical("Store unavailable at startup: %s", e)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
