"""
Fetch replay logs from Pokemon Showdown.

A reference is either a replay viewer URL
(https://replay.pokemonshowdown.com/gen9vgc2024regg-2171180592) or the bare
battle id. The JSON endpoint carries the log plus player names and upload
time, so that is what gets fetched.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

import aiohttp
import requests

from constants import DEFAULT_FETCH_TIMEOUT_SEC, REPLAY_BASE_URL, USER_AGENT

logger = logging.getLogger(__name__)

REPLAY_URL_PATTERN = re.compile(
    r"^(?:https?://replay\.pokemonshowdown\.com/)?([a-z0-9]+)-(\d+)(?:-([a-z0-9]+))?$",
    re.IGNORECASE,
)
REPLAY_URL_IN_TEXT = re.compile(r"https?://replay\.pokemonshowdown\.com/[^\s]+", re.IGNORECASE)


class InvalidReplayUrlError(ValueError):
    pass


class ReplayFetchError(Exception):
    pass


class MalformedReplayError(Exception):
    pass


@dataclass(frozen=True)
class ReplayUrl:
    format: str
    battle_number: str
    auth: Optional[str]
    base_url: str = REPLAY_BASE_URL

    @property
    def battle_id(self) -> str:
        parts = [self.format, self.battle_number]
        if self.auth:
            parts.append(self.auth)
        return "-".join(parts)

    @property
    def viewer_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.battle_id}"

    @property
    def json_url(self) -> str:
        return f"{self.viewer_url}.json"

    @property
    def log_url(self) -> str:
        return f"{self.viewer_url}.log"


@dataclass
class FetchedReplay:
    battle_id: str
    log: str
    players: List[str] = field(default_factory=list)
    format: Optional[str] = None
    uploaded_at: Optional[int] = None


def parse_replay_url(reference: str, base_url: str = REPLAY_BASE_URL) -> ReplayUrl:
    cleaned = (reference or "").strip().split("?", 1)[0].rstrip("/")
    cleaned = re.sub(r"\.(log|json)$", "", cleaned)
    match = REPLAY_URL_PATTERN.match(cleaned)
    if match is None:
        raise InvalidReplayUrlError(f"Not a Pokemon Showdown replay: {reference!r}")
    fmt, number, auth = match.groups()
    return ReplayUrl(format=fmt.lower(), battle_number=number, auth=auth, base_url=base_url)


def extract_replay_urls(text: str) -> List[str]:
    """Replay URLs found in free text, de-duplicated, in order of appearance."""
    urls = []
    for raw in REPLAY_URL_IN_TEXT.findall(text or ""):
        url = raw.rstrip(".,;!?)")
        if url not in urls:
            urls.append(url)
    return urls


def decode_replay_payload(battle_id: str, body: str) -> FetchedReplay:
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise MalformedReplayError(f"Replay {battle_id} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedReplayError(f"Replay {battle_id} payload is not an object")
    log_text = data.get("log")
    if not isinstance(log_text, str) or not log_text.strip():
        raise MalformedReplayError(f"Replay {battle_id} has no log")

    players = data.get("players")
    uploaded_at = data.get("uploadtime")
    return FetchedReplay(
        battle_id=data.get("id") or battle_id,
        log=log_text,
        players=[p for p in players if isinstance(p, str)] if isinstance(players, list) else [],
        format=data.get("format"),
        uploaded_at=uploaded_at if isinstance(uploaded_at, int) else None,
    )


class ShowdownReplayFetcher:
    """
    Async fetcher over one shared aiohttp session.

    Use as ``async with ShowdownReplayFetcher() as fetcher: await fetcher.fetch(ref)``.
    """

    def __init__(
        self,
        base_url: str = REPLAY_BASE_URL,
        timeout_sec: float = DEFAULT_FETCH_TIMEOUT_SEC,
    ):
        self.base_url = base_url
        self.timeout_sec = timeout_sec
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        timeout = aiohttp.ClientTimeout(total=max(1.0, float(self.timeout_sec)))
        self._session = aiohttp.ClientSession(
            timeout=timeout, headers={"User-Agent": USER_AGENT}
        )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch(self, reference: str) -> FetchedReplay:
        if self._session is None:
            raise RuntimeError("ShowdownReplayFetcher used outside 'async with'")
        url = parse_replay_url(reference, self.base_url)
        logger.debug("Fetching %s", url.json_url)
        try:
            async with self._session.get(url.json_url) as resp:
                body = await resp.text()
                if resp.status != 200:
                    raise ReplayFetchError(
                        f"Failed to fetch replay {url.battle_id}: HTTP {resp.status}"
                    )
        except asyncio.TimeoutError as exc:
            raise ReplayFetchError(f"Timed out fetching replay {url.battle_id}") from exc
        except aiohttp.ClientError as exc:
            raise ReplayFetchError(f"Network error fetching replay {url.battle_id}: {exc}") from exc
        return decode_replay_payload(url.battle_id, body)


def fetch_replay_blocking(
    reference: str,
    base_url: str = REPLAY_BASE_URL,
    timeout_sec: float = DEFAULT_FETCH_TIMEOUT_SEC,
) -> FetchedReplay:
    """One-off synchronous fetch, for inspecting a single replay."""
    url = parse_replay_url(reference, base_url)
    try:
        resp = requests.get(url.json_url, timeout=timeout_sec, headers={"User-Agent": USER_AGENT})
    except requests.RequestException as exc:
        raise ReplayFetchError(f"Network error fetching replay {url.battle_id}: {exc}") from exc
    if resp.status_code != 200:
        raise ReplayFetchError(f"Failed to fetch replay {url.battle_id}: HTTP {resp.status_code}")
    return decode_replay_payload(url.battle_id, resp.text)
