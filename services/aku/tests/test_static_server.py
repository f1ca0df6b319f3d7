"""Tests for the sticker page server."""

import socket

import httpx
import pytest
from fastapi.testclient import TestClient

from services.aku.static_server import StickerPageServer, create_sticker_app


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestStickerApp:
    """Test the static file app."""

    @pytest.mark.unit
    def test_serves_rendered_pages(self, tmp_path):
        """Files in the directory are served at the root."""
        (tmp_path / "cats-0.png").write_bytes(b"\x89PNG-page")
        client = TestClient(create_sticker_app(tmp_path))

        response = client.get("/cats-0.png")

        assert response.status_code == 200
        assert response.content == b"\x89PNG-page"
        assert response.headers["content-type"] == "image/png"

    @pytest.mark.unit
    def test_missing_page(self, tmp_path):
        """Unknown files are 404."""
        client = TestClient(create_sticker_app(tmp_path))

        assert client.get("/cats-9.png").status_code == 404

    @pytest.mark.unit
    def test_directory_may_appear_later(self, tmp_path):
        """The app can be built before its directory exists."""
        directory = tmp_path / "later"
        app = create_sticker_app(directory)
        directory.mkdir()
        (directory / "dogs-0.png").write_bytes(b"png")

        assert TestClient(app).get("/dogs-0.png").status_code == 200

    @pytest.mark.unit
    def test_no_docs_routes(self, tmp_path):
        """Only files are served."""
        client = TestClient(create_sticker_app(tmp_path))

        assert client.get("/docs").status_code == 404
        assert client.get("/openapi.json").status_code == 404


class TestStickerPageServer:
    """Test running the server inside the event loop."""

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_start_serve_stop(self, tmp_path):
        """The server answers once started and stops cleanly."""
        (tmp_path / "cats-0.png").write_bytes(b"png")
        port = _free_port()
        server = StickerPageServer(tmp_path, host="127.0.0.1", port=port)

        await server.start()
        try:
            assert server.running
            async with httpx.AsyncClient() as client:
                response = await client.get(f"http://127.0.0.1:{port}/cats-0.png")
            assert response.status_code == 200
        finally:
            await server.stop()

        assert not server.running

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_before_start(self, tmp_path):
        """Stopping a server that never started is a no-op."""
        await StickerPageServer(tmp_path).stop()
