"""Static HTTP server for rendered sticker pages, embedded in the bot's event loop."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from services.common.structured_logging import get_logger

logger = get_logger(__name__, service_name="aku")

_STARTUP_POLL_SECONDS = 0.05


class StaticServerError(Exception):
    """Raised when the page server cannot start."""


def create_sticker_app(directory: Path) -> FastAPI:
    """FastAPI app serving the files of ``directory`` at ``/``."""
    app = FastAPI(title="aku-stickers", docs_url=None, redoc_url=None, openapi_url=None)
    # check_dir=False: the cache directory is recreated after the app is built
    app.mount("/", StaticFiles(directory=directory, check_dir=False), name="stickers")
    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        return

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class StickerPageServer:
    def __init__(
        self,
        directory: Path,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        startup_timeout: float = 10.0,
    ) -> None:
        self.directory = Path(directory)
        self.host = host
        self.port = port
        self._startup_timeout = startup_timeout
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start serving; returns once the socket is bound.

        Raises:
            StaticServerError: If the server exits before it starts listening
        """
        config = uvicorn.Config(
            create_sticker_app(self.directory),
            host=self.host,
            port=self.port,
            log_config=None,
            access_log=True,
            lifespan="off",
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(), name="sticker-page-server")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._startup_timeout
        while not self._server.started:
            if self._task.done():
                raise StaticServerError(
                    f"Sticker page server failed to bind {self.host}:{self.port}"
                )
            if loop.time() > deadline:
                await self.stop()
                raise StaticServerError("Sticker page server did not start in time")
            await asyncio.sleep(_STARTUP_POLL_SECONDS)

        logger.info(
            "static_server.started",
            host=self.host,
            port=self.port,
            directory=str(self.directory),
        )

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        except (Exception, SystemExit) as exc:
            logger.warning("static_server.stop_failed", error=str(exc))
        self._server = None
        self._task = None
        logger.info("static_server.stopped")
