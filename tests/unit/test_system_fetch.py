"""Unit tests for the artifact fetcher."""

import hashlib
from pathlib import Path
from unittest.mock import patch

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as HTTPServer
from tenacity import wait_none

from provisioner.system.fetch import Fetcher, sha256_file

PAYLOAD = b"\x1f\x8b" + b"runc" * 50_000


def make_app(failures: int = 0) -> tuple[web.Application, dict[str, int]]:
    """Serve PAYLOAD at /artifact after ``failures`` server errors."""
    calls = {"count": 0}

    async def artifact(request: web.Request) -> web.Response:
        calls["count"] += 1
        if calls["count"] <= failures:
            return web.Response(status=503)
        return web.Response(body=PAYLOAD)

    app = web.Application()
    app.router.add_get("/artifact", artifact)
    return app, calls


class TestFetcher:
    """Tests for Fetcher against a local HTTP server."""

    @pytest.mark.asyncio
    async def test_fetch(self, tmp_path: Path) -> None:
        """Test that content is written and its digest returned."""
        dest = tmp_path / "cache" / "runc"
        async with HTTPServer(make_app()[0]) as server:
            digest = await Fetcher().fetch(str(server.make_url("/artifact")), dest)

        assert dest.read_bytes() == PAYLOAD
        assert digest == hashlib.sha256(PAYLOAD).hexdigest()
        assert not (dest.parent / ".runc.partial").exists()

    @pytest.mark.asyncio
    async def test_http_error_not_retried_by_default(self, tmp_path: Path) -> None:
        """Test that a failing response raises without retries."""
        app, calls = make_app(failures=1)
        async with HTTPServer(app) as server:
            with pytest.raises(aiohttp.ClientResponseError):
                await Fetcher().fetch(str(server.make_url("/artifact")), tmp_path / "runc")

        assert calls["count"] == 1
        assert not (tmp_path / "runc").exists()
        assert not (tmp_path / ".runc.partial").exists()

    @pytest.mark.asyncio
    async def test_retries(self, tmp_path: Path) -> None:
        """Test that transient failures are retried."""
        app, calls = make_app(failures=2)
        with patch("provisioner.system.fetch.wait_exponential", return_value=wait_none()):
            async with HTTPServer(app) as server:
                digest = await Fetcher().fetch(
                    str(server.make_url("/artifact")), tmp_path / "runc", retries=2
                )

        assert calls["count"] == 3
        assert digest == hashlib.sha256(PAYLOAD).hexdigest()

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, tmp_path: Path) -> None:
        """Test that the last error is raised once retries run out."""
        app, calls = make_app(failures=5)
        with patch("provisioner.system.fetch.wait_exponential", return_value=wait_none()):
            async with HTTPServer(app) as server:
                with pytest.raises(aiohttp.ClientResponseError):
                    await Fetcher().fetch(
                        str(server.make_url("/artifact")), tmp_path / "runc", retries=1
                    )

        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_existing_file_kept_on_failure(self, tmp_path: Path) -> None:
        """Test that a failed download leaves an earlier artifact in place."""
        dest = tmp_path / "runc"
        dest.write_bytes(b"previous")
        async with HTTPServer(make_app(failures=1)[0]) as server:
            with pytest.raises(aiohttp.ClientError):
                await Fetcher().fetch(str(server.make_url("/artifact")), dest)

        assert dest.read_bytes() == b"previous"


def test_sha256_file(tmp_path: Path) -> None:
    """Test hashing a local file."""
    path = tmp_path / "blob"
    path.write_bytes(PAYLOAD)
    assert sha256_file(path) == hashlib.sha256(PAYLOAD).hexdigest()
