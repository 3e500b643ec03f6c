import asyncio
import json

import pytest
import requests
from aiohttp import web
from aiohttp.test_utils import TestServer

from vsr import fetcher as fetcher_module
from vsr.fetcher import (
    InvalidReplayUrlError,
    MalformedReplayError,
    ReplayFetchError,
    ShowdownReplayFetcher,
    decode_replay_payload,
    extract_replay_urls,
    fetch_replay_blocking,
    parse_replay_url,
)

LOG = "|player|p1|Ash|\n|player|p2|Gary|\n|win|Ash"


class TestParseReplayUrl:
    def test_full_url(self):
        url = parse_replay_url("https://replay.pokemonshowdown.com/gen9vgc2024regg-2171180592")
        assert url.format == "gen9vgc2024regg"
        assert url.battle_number == "2171180592"
        assert url.auth is None
        assert url.battle_id == "gen9vgc2024regg-2171180592"
        assert url.json_url == "https://replay.pokemonshowdown.com/gen9vgc2024regg-2171180592.json"
        assert url.log_url.endswith("-2171180592.log")

    def test_private_replay_keeps_auth_suffix(self):
        url = parse_replay_url("https://replay.pokemonshowdown.com/gen9vgc2024regg-2171180592-abc123pw")
        assert url.auth == "abc123pw"
        assert url.battle_id == "gen9vgc2024regg-2171180592-abc123pw"

    def test_suffixes_query_and_slash_are_ignored(self):
        for ref in (
            "https://replay.pokemonshowdown.com/gen9ou-100.json",
            "https://replay.pokemonshowdown.com/gen9ou-100.log",
            "https://replay.pokemonshowdown.com/gen9ou-100/",
            "https://replay.pokemonshowdown.com/gen9ou-100?p2",
            "  gen9ou-100  ",
        ):
            assert parse_replay_url(ref).battle_id == "gen9ou-100"

    def test_format_is_lowercased(self):
        assert parse_replay_url("Gen9OU-100").battle_id == "gen9ou-100"

    @pytest.mark.parametrize(
        "ref",
        ["", "not a replay", "https://example.com/gen9ou-100", "https://replay.pokemonshowdown.com/"],
    )
    def test_rejects_non_replays(self, ref):
        with pytest.raises(InvalidReplayUrlError):
            parse_replay_url(ref)


def test_extract_replay_urls_from_text():
    text = (
        "game 1: https://replay.pokemonshowdown.com/gen9ou-1, game 2 "
        "(https://replay.pokemonshowdown.com/gen9ou-2). again https://replay.pokemonshowdown.com/gen9ou-1"
    )
    assert extract_replay_urls(text) == [
        "https://replay.pokemonshowdown.com/gen9ou-1",
        "https://replay.pokemonshowdown.com/gen9ou-2",
    ]
    assert extract_replay_urls("") == []


class TestDecodePayload:
    def test_valid_payload(self):
        body = json.dumps({
            "id": "gen9ou-1",
            "log": LOG,
            "players": ["Ash", "Gary"],
            "format": "[Gen 9] OU",
            "uploadtime": 1700000000,
        })
        replay = decode_replay_payload("gen9ou-1", body)
        assert replay.battle_id == "gen9ou-1"
        assert replay.log == LOG
        assert replay.players == ["Ash", "Gary"]
        assert replay.format == "[Gen 9] OU"
        assert replay.uploaded_at == 1700000000

    @pytest.mark.parametrize("body", ["<html>", "[]", json.dumps({"log": ""}), json.dumps({"id": "x"})])
    def test_malformed_payloads(self, body):
        with pytest.raises(MalformedReplayError):
            decode_replay_payload("gen9ou-1", body)


def _app():
    async def replay(request):
        name = request.match_info["name"]
        if not name.endswith(".json"):
            return web.Response(status=404)
        battle_id = name[: -len(".json")]
        if battle_id == "gen9ou-404":
            return web.Response(status=404, text="Not found")
        if battle_id == "gen9ou-999":
            return web.Response(text="<html>maintenance</html>")
        return web.json_response({
            "id": battle_id,
            "log": LOG,
            "players": ["Ash", "Gary"],
            "uploadtime": 1700000000,
            "ua": request.headers.get("User-Agent"),
        })

    app = web.Application()
    app.router.add_get("/{name}", replay)
    return app


def _with_server(check):
    async def _run():
        server = TestServer(_app())
        await server.start_server()
        try:
            async with ShowdownReplayFetcher(base_url=str(server.make_url("/")), timeout_sec=5) as fetcher:
                await check(fetcher)
        finally:
            await server.close()

    asyncio.run(_run())


def test_async_fetch_returns_log_and_metadata():
    async def check(fetcher):
        replay = await fetcher.fetch("https://replay.pokemonshowdown.com/gen9ou-1")
        assert replay.battle_id == "gen9ou-1"
        assert replay.log == LOG
        assert replay.players == ["Ash", "Gary"]
        assert replay.uploaded_at == 1700000000

    _with_server(check)


def test_async_fetch_non_200_is_fetch_error():
    async def check(fetcher):
        with pytest.raises(ReplayFetchError, match="HTTP 404"):
            await fetcher.fetch("gen9ou-404")

    _with_server(check)


def test_async_fetch_bad_body_is_malformed():
    async def check(fetcher):
        with pytest.raises(MalformedReplayError):
            await fetcher.fetch("gen9ou-999")

    _with_server(check)


def test_async_fetch_network_error():
    async def _run():
        # nothing listens on port 9 locally
        async with ShowdownReplayFetcher(base_url="http://127.0.0.1:9", timeout_sec=2) as fetcher:
            with pytest.raises(ReplayFetchError):
                await fetcher.fetch("gen9ou-1")

    asyncio.run(_run())


def test_fetch_outside_context_manager():
    with pytest.raises(RuntimeError):
        asyncio.run(ShowdownReplayFetcher().fetch("gen9ou-1"))


class _FakeResponse:
    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text


def test_blocking_fetch(monkeypatch):
    seen = {}

    def fake_get(url, timeout=None, headers=None):
        seen["url"] = url
        return _FakeResponse(200, json.dumps({"log": LOG, "players": ["Ash", "Gary"]}))

    monkeypatch.setattr(fetcher_module.requests, "get", fake_get)
    replay = fetch_replay_blocking("gen9ou-5")
    assert seen["url"] == "https://replay.pokemonshowdown.com/gen9ou-5.json"
    assert replay.battle_id == "gen9ou-5"
    assert replay.players == ["Ash", "Gary"]


def test_blocking_fetch_errors(monkeypatch):
    monkeypatch.setattr(fetcher_module.requests, "get", lambda *a, **k: _FakeResponse(500, ""))
    with pytest.raises(ReplayFetchError, match="HTTP 500"):
        fetch_replay_blocking("gen9ou-5")

    def boom(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(fetcher_module.requests, "get", boom)
    with pytest.raises(ReplayFetchError):
        fetch_replay_blocking("gen9ou-5")
