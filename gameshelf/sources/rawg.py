# ===== IMPORTS & DEPENDENCIES =====
import logging
import aiohttp
from typing import List, Dict, Any
from urllib.parse import quote

from gameshelf.core.base_client import BaseWebClient
from gameshelf.core.errors import RemoteFetchFailed
from gameshelf.models.game import GameRecord, ScreenshotRecord
from gameshelf.config import RAWG_API_BASE_URL, RAWG_API_KEY, REQUEST_TIMEOUT
from gameshelf.utils.game_utils import clean_search_term, description_to_text, format_release_date

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== CORE BUSINESS LOGIC =====
class RawgClient(BaseWebClient):
    """Typed accessor for the RAWG catalog API: game details, screenshots and search."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str = RAWG_API_KEY,
        base_url: str = RAWG_API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        super().__init__(session=session, timeout=timeout)
        self._api_key = api_key
        self._base_url = base_url.rstrip('/')
        if not api_key:
            logger.warning(f"[{self.__class__.__name__}] No RAWG API key configured; requests will likely be rejected.")

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path}"

    def _params(self, **extra: str) -> Dict[str, str]:
        return {'key': self._api_key, **extra}

    def _parse_game(self, raw: Dict[str, Any]) -> GameRecord:
        """Normalizes a RAWG game payload (detail or search result) into a GameRecord."""
        game: GameRecord = {
            'id': raw.get('id'),
            'slug': raw.get('slug', ''),
            'name': raw.get('name', ''),
            'release_date': raw.get('released'),
            'release_date_label': format_release_date(raw.get('released')),
            'hero_image_url': raw.get('background_image'),
            'rating': raw.get('rating'),
            'rating_top': raw.get('rating_top'),
        }

        # Search results carry no description; the detail endpoint does
        if 'description' in raw:
            game['description'] = raw.get('description')
            game['description_text'] = description_to_text(raw.get('description') or '')

        game['genres'] = [
            {'name': g.get('name', ''), 'slug': g.get('slug', '')}
            for g in raw.get('genres') or []
        ]
        game['platforms'] = [
            p['platform']['name']
            for p in raw.get('parent_platforms') or []
            if isinstance(p.get('platform'), dict) and p['platform'].get('name')
        ]
        game['rating_breakdown'] = [
            {'label': r.get('title', ''), 'percent': r.get('percent', 0)}
            for r in raw.get('ratings') or []
        ]

        # Optional fields are left absent rather than set to None
        if raw.get('metacritic') is not None:
            game['metacritic_score'] = raw['metacritic']
        if raw.get('website'):
            game['website_url'] = raw['website']
        if raw.get('reddit_url'):
            game['reddit_url'] = raw['reddit_url']

        return game

    async def fetch_game(self, slug: str) -> GameRecord:
        """Fetches the detail record of a single game by slug."""
        if not slug:
            raise RemoteFetchFailed("Cannot fetch a game without a slug")

        data = await self._fetch(self._url(f"games/{quote(slug, safe='')}"), params=self._params())
        if not isinstance(data, dict):
            raise RemoteFetchFailed(f"Unexpected game payload for '{slug}'")

        game = self._parse_game(data)
        logger.info(f"✅ [{self.__class__.__name__}] Fetched game '{game.get('name')}' ({slug}).")
        return game

    async def fetch_screenshots(self, slug: str) -> List[ScreenshotRecord]:
        """Fetches the ordered screenshots of a game."""
        if not slug:
            raise RemoteFetchFailed("Cannot fetch screenshots without a slug")

        data = await self._fetch(self._url(f"games/{quote(slug, safe='')}/screenshots"), params=self._params())
        results = data.get('results') if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise RemoteFetchFailed(f"Unexpected screenshots payload for '{slug}'")

        screenshots = [ScreenshotRecord(image_url=item['image']) for item in results if item.get('image')]
        logger.debug(f"[{self.__class__.__name__}] Found {len(screenshots)} screenshots for '{slug}'.")
        return screenshots

    async def search_games(self, term: str) -> List[GameRecord]:
        """Searches the catalog. Results keep the ranking returned by the API."""
        cleaned_term = clean_search_term(term)
        if not cleaned_term:
            logger.debug(f"[{self.__class__.__name__}] Empty search term, skipping network call.")
            return []

        data = await self._fetch(self._url("games"), params=self._params(search=cleaned_term))
        results = data.get('results') if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise RemoteFetchFailed(f"Unexpected search payload for '{cleaned_term}'")

        games = [self._parse_game(item) for item in results]
        logger.info(f"✅ [{self.__class__.__name__}] Search '{cleaned_term}' returned {len(games)} games.")
        return games
