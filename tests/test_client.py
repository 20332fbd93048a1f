"""Tests for media_sync.remote.client against an in-process aiohttp server"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from media_sync.core.config import ServerConfig, SyncConfig
from media_sync.core.exceptions import RemoteError
from media_sync.core.models import ServerKind
from media_sync.remote.client import MediaServerClient


ARTISTS = [{"Id": f"ar-{i}", "Name": f"Artist {i}"} for i in range(5)]


def _paged(items, request):
    start = int(request.query.get("StartIndex", 0))
    limit = int(request.query.get("Limit", len(items)))
    return web.json_response({
        "Items": items[start:start + limit],
        "TotalRecordCount": len(items),
    })


async def _serve(routes):
    app = web.Application()
    app.add_routes(routes)
    server = TestServer(app)
    await server.start_server()
    return server


def _client(server, access_token="secret", user_id="user-1", page_size=2):
    config = ServerConfig(
        name="test",
        kind=ServerKind.JELLYFIN,
        url=str(server.make_url("")).rstrip("/"),
        user_id=user_id,
        access_token=access_token,
    )
    return MediaServerClient(config, SyncConfig(page_size=page_size, request_timeout=5))


class TestMediaServerClient:

    @pytest.mark.asyncio
    async def test_follows_pagination(self):
        seen = []

        async def artists(request):
            seen.append(request.query["StartIndex"])
            return _paged(ARTISTS, request)

        server = await _serve([web.get("/Artists/AlbumArtists", artists)])
        try:
            async with _client(server) as client:
                result = await client.fetch_artists()
        finally:
            await server.close()

        assert [a.id for a in result] == [f"ar-{i}" for i in range(5)]
        assert seen == ["0", "2", "4"]

    @pytest.mark.asyncio
    async def test_sends_token(self):
        headers = {}

        async def artists(request):
            headers.update(request.headers)
            return _paged([], request)

        server = await _serve([web.get("/Artists/AlbumArtists", artists)])
        try:
            async with _client(server) as client:
                await client.fetch_artists()
        finally:
            await server.close()

        assert headers["Authorization"] == 'MediaBrowser Token="secret"'

    @pytest.mark.asyncio
    async def test_unauthorized_is_auth_error(self):
        async def artists(request):
            return web.Response(status=401)

        server = await _serve([web.get("/Artists/AlbumArtists", artists)])
        try:
            async with _client(server) as client:
                with pytest.raises(RemoteError) as exc_info:
                    await client.fetch_artists()
        finally:
            await server.close()

        assert exc_info.value.is_auth_error
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_server_error(self):
        async def items(request):
            return web.Response(status=500)

        server = await _serve([web.get("/Items", items)])
        try:
            async with _client(server) as client:
                with pytest.raises(RemoteError) as exc_info:
                    await client.fetch_tracks()
        finally:
            await server.close()

        assert not exc_info.value.is_auth_error
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_malformed_record(self):
        async def items(request):
            return web.json_response({"Items": [{"Name": "no id"}], "TotalRecordCount": 1})

        server = await _serve([web.get("/Items", items)])
        try:
            async with _client(server) as client:
                with pytest.raises(RemoteError, match="Malformed album"):
                    await client.fetch_albums()
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_liked_tracks_need_user_id(self):
        server = await _serve([])
        try:
            async with _client(server, user_id=None) as client:
                with pytest.raises(RemoteError) as exc_info:
                    await client.fetch_liked_tracks()
        finally:
            await server.close()

        assert exc_info.value.is_auth_error

    @pytest.mark.asyncio
    async def test_not_open(self):
        config = ServerConfig(name="test", kind=ServerKind.EMBY, url="http://localhost:1")
        client = MediaServerClient(config, SyncConfig())

        with pytest.raises(RemoteError, match="not open"):
            await client.fetch_artists()
