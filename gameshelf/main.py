# ===== IMPORTS & DEPENDENCIES =====
import asyncio
import logging
import os
import json
import aiohttp
from typing import List, Optional, Dict, Any

# --- Configuration ---
from gameshelf.config import (
    LOG_LEVEL, WEB_DATA_DIR, SNAPSHOT_FILE, PREFETCH_SLUGS, DATABASE_PATH,
    GAME_NAMESPACE, SCREENSHOTS_NAMESPACE, SEARCH_NAMESPACE,
)

# --- Core Components ---
from gameshelf.core.database import DocumentDatabase
from gameshelf.core.query_cache import QueryCache, QueryCacheEntry, ResourceKey
from gameshelf.core.identity import IdentityProvider, LocalIdentityProvider
from gameshelf.core.session import SessionStore
from gameshelf.core.bookmarks import BookmarkStore

# --- Data Sources ---
from gameshelf.sources.rawg import RawgClient

# --- Utility Functions ---
from gameshelf.utils.debounce import SearchDebouncer
from gameshelf.utils.game_utils import clean_search_term

# ===== CONFIGURATION & CONSTANTS =====
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

# ===== CORE BUSINESS LOGIC =====
class GameShelfApp:
    """Wires the catalog client, query cache, session and bookmark stores around one HTTP session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        documents: DocumentDatabase,
        identity: Optional[IdentityProvider] = None,
        cache: Optional[QueryCache] = None,
        client: Optional[RawgClient] = None,
    ):
        self.client = client or RawgClient(session)
        self.cache = cache or QueryCache()
        self.documents = documents
        self.identity = identity or LocalIdentityProvider()
        self.session = SessionStore(self.identity, documents)
        self.bookmarks = BookmarkStore(documents, self.cache)
        self.debouncer = SearchDebouncer()

    # --- Catalog reads ---
    async def game(self, slug: str) -> QueryCacheEntry:
        """Game detail; deferred (idle) until a slug is known."""
        return await self.cache.use_query(
            ResourceKey.of(GAME_NAMESPACE, slug),
            lambda: self.client.fetch_game(slug),
            enabled=bool(slug),
        )

    async def screenshots(self, slug: str) -> QueryCacheEntry:
        return await self.cache.use_query(
            ResourceKey.of(SCREENSHOTS_NAMESPACE, slug),
            lambda: self.client.fetch_screenshots(slug),
            enabled=bool(slug),
        )

    async def search(self, term: str) -> QueryCacheEntry:
        cleaned = clean_search_term(term)
        return await self.cache.use_query(
            ResourceKey.of(SEARCH_NAMESPACE, cleaned),
            lambda: self.client.search_games(cleaned),
        )

    async def search_as_you_type(self, term: str) -> Optional[QueryCacheEntry]:
        """Searches once typing settles. Returns None when a newer term superseded this one."""
        settled = await self.debouncer.settle(term)
        if settled is None:
            return None
        return await self.search(settled)

    # --- Prefetch / hydrate ---
    async def prefetch_games(self, slugs: List[str]) -> Dict[str, Any]:
        """Prefetches details and screenshots of each slug and returns the dehydrated cache."""
        logger.info(f"--- Prefetching {len(slugs)} games ---")
        tasks = []
        for slug in slugs:
            tasks.append(self.cache.prefetch(ResourceKey.of(GAME_NAMESPACE, slug), lambda s=slug: self.client.fetch_game(s)))
            tasks.append(self.cache.prefetch(ResourceKey.of(SCREENSHOTS_NAMESPACE, slug), lambda s=slug: self.client.fetch_screenshots(s)))
        await asyncio.gather(*tasks)
        return self.cache.dehydrate()

    def save_snapshot(self, snapshot: Dict[str, Any], path: Optional[str] = None) -> str:
        """Saves a dehydrated cache snapshot to a JSON file for the next process to hydrate."""
        output_path = path or os.path.join(WEB_DATA_DIR, SNAPSHOT_FILE)
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(snapshot, f, ensure_ascii=False, indent=4)
        logger.info(f"💾 Snapshot with {len(snapshot.get('queries', []))} entries saved to {output_path}")
        return output_path

    def load_snapshot(self, path: Optional[str] = None) -> int:
        """Hydrates the cache from a saved snapshot. A missing or unreadable file hydrates nothing."""
        input_path = path or os.path.join(WEB_DATA_DIR, SNAPSHOT_FILE)
        if not os.path.exists(input_path):
            logger.info(f"No snapshot found at {input_path}")
            return 0
        try:
            with open(input_path, 'r', encoding='utf-8') as f:
                snapshot = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ Could not read snapshot {input_path}: {e}")
            return 0
        return self.cache.hydrate(snapshot)

# ===== INITIALIZATION & STARTUP =====
async def main():
    """Prefetches the configured games and writes the snapshot for the front-end to hydrate."""
    if not PREFETCH_SLUGS:
        logger.warning("PREFETCH_SLUGS is empty. Nothing to prefetch.")
        return

    documents = DocumentDatabase(DATABASE_PATH)
    async with aiohttp.ClientSession() as session:
        app = GameShelfApp(session, documents)
        try:
            snapshot = await app.prefetch_games(PREFETCH_SLUGS)
            app.save_snapshot(snapshot)
        except Exception as e:
            logger.critical(f"🔥🔥🔥 A critical error occurred while prefetching: {e}", exc_info=True)

if __name__ == "__main__":
    if os.name == 'nt':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main())
