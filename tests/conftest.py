"""Shared fixtures: a fake RAWG catalog served by aiohttp.web, a temporary document store."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from gameshelf.core.database import DocumentDatabase
from gameshelf.sources.rawg import RawgClient

API_KEY = "test-key"

PORTAL_2: dict[str, Any] = {
    "id": 4200,
    "slug": "portal-2",
    "name": "Portal 2",
    "released": "2011-04-18",
    "description": "<p>Portal 2 is a first-person <b>puzzle</b> game.</p><script>alert('x')</script>",
    "background_image": "https://media.rawg.io/media/games/portal-2.jpg",
    "genres": [
        {"id": 2, "name": "Shooter", "slug": "shooter", "games_count": 100},
        {"id": 7, "name": "Puzzle", "slug": "puzzle", "games_count": 50},
    ],
    "parent_platforms": [
        {"platform": {"id": 1, "name": "PC", "slug": "pc"}},
        {"platform": {"id": 3, "name": "Xbox", "slug": "xbox"}},
    ],
    "rating": 4.61,
    "rating_top": 5,
    "metacritic": 95,
    "website": "http://www.thinkwithportals.com/",
    "reddit_url": "https://www.reddit.com/r/Portal/",
    "ratings": [
        {"id": 5, "title": "exceptional", "count": 4000, "percent": 70.1},
        {"id": 4, "title": "recommended", "count": 1500, "percent": 23.4},
    ],
}

HALF_LIFE: dict[str, Any] = {
    "id": 13537,
    "slug": "half-life-2",
    "name": "Half-Life 2",
    "released": "2004-11-16",
    "background_image": "https://media.rawg.io/media/games/half-life-2.jpg",
    "genres": [{"id": 2, "name": "Shooter", "slug": "shooter"}],
    "rating": 4.48,
    "rating_top": 5,
    "metacritic": None,
}

SCREENSHOTS = {
    "portal-2": [
        {"id": 1, "image": "https://media.rawg.io/screenshots/p2-1.jpg"},
        {"id": 2, "image": "https://media.rawg.io/screenshots/p2-2.jpg"},
    ],
}


async def _game_handler(request: web.Request) -> web.Response:
    request.app["hits"].append(request.path_qs)
    if request.query.get("key") != API_KEY:
        return web.json_response({"error": "invalid key"}, status=401)
    slug = request.match_info["slug"]
    if slug == "slow":
        await asyncio.sleep(1)
    games = {g["slug"]: g for g in (PORTAL_2, HALF_LIFE)}
    if slug not in games:
        return web.json_response({"detail": "Not found."}, status=404)
    return web.json_response(games[slug])


async def _screenshots_handler(request: web.Request) -> web.Response:
    request.app["hits"].append(request.path_qs)
    slug = request.match_info["slug"]
    return web.json_response({"count": len(SCREENSHOTS.get(slug, [])), "results": SCREENSHOTS.get(slug, [])})


async def _search_handler(request: web.Request) -> web.Response:
    request.app["hits"].append(request.path_qs)
    term = request.query.get("search", "")
    # Ranked deliberately against alphabetical order
    results = [PORTAL_2, HALF_LIFE] if term.startswith("p") else [HALF_LIFE, PORTAL_2]
    return web.json_response({"count": len(results), "results": results})


@pytest_asyncio.fixture
async def rawg_server() -> AsyncIterator[TestServer]:
    app = web.Application()
    app["hits"] = []
    app.router.add_get("/api/games", _search_handler)
    app.router.add_get("/api/games/{slug}", _game_handler)
    app.router.add_get("/api/games/{slug}/screenshots", _screenshots_handler)
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def http_session() -> AsyncIterator[aiohttp.ClientSession]:
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def rawg_client(rawg_server: TestServer, http_session: aiohttp.ClientSession) -> RawgClient:
    return RawgClient(http_session, api_key=API_KEY, base_url=str(rawg_server.make_url("/api")))


@pytest.fixture
def database(tmp_path) -> DocumentDatabase:
    return DocumentDatabase(str(tmp_path / "documents.db"))


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GatedFetch:
    """A fetch function that counts calls and blocks until its gate opens."""

    def __init__(self, result: Any = None, error: Exception | None = None, open_gate: bool = False) -> None:
        self.calls = 0
        self.result = result
        self.error = error
        self.gate = asyncio.Event()
        if open_gate:
            self.gate.set()

    async def __call__(self) -> Any:
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
