# ===== IMPORTS & DEPENDENCIES =====
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from gameshelf.config import BOOKMARKS_NAMESPACE, USERS_COLLECTION, BOOKMARKS_SUBCOLLECTION
from gameshelf.core.database import DocumentDatabase, SERVER_TIMESTAMP
from gameshelf.core.errors import ErrorInfo, ErrorKind, RemoteFetchFailed
from gameshelf.core.query_cache import QueryCache, QueryCacheEntry, ResourceKey
from gameshelf.models.game import BookmarkRecord, GameRecord, bookmark_from_game

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

_BOOKMARK_FIELDS = ('document_id', 'name', 'slug', 'hero_image_url', 'release_date', 'genres', 'created_at')


@dataclass(frozen=True)
class MutationResult:
    """
    Outcome of a bookmark write. `ok=False` means the change did not persist;
    `written=False` with `ok=True` means nothing needed writing (duplicate add).
    """
    ok: bool
    written: bool = False
    document_id: Optional[str] = None
    error: Optional[ErrorInfo] = None


# ===== CORE BUSINESS LOGIC =====
class BookmarkStore:
    """
    Per-user bookmark list stored at users/{uid}/bookmarks.
    Reads go through the query cache; writes go straight to the document store and
    are followed by re-validating the cached list against it.

    Duplicates are suppressed by bookmark *name*, so two catalog games sharing a name
    can not both be bookmarked.
    """

    def __init__(self, documents: DocumentDatabase, cache: QueryCache):
        self._documents = documents
        self._cache = cache
        self._locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def key(uid: str) -> ResourceKey:
        return ResourceKey.of(BOOKMARKS_NAMESPACE, uid)

    def _collection_path(self, uid: str) -> str:
        return f"{USERS_COLLECTION}/{uid}/{BOOKMARKS_SUBCOLLECTION}"

    def _lock_for(self, uid: str) -> asyncio.Lock:
        lock = self._locks.get(uid)
        if lock is None:
            lock = self._locks[uid] = asyncio.Lock()
        return lock

    async def _fetch_bookmarks(self, uid: str) -> List[BookmarkRecord]:
        try:
            documents = await self._documents.list_documents(self._collection_path(uid))
        except Exception as e:
            logger.error(f"❌ [{self.__class__.__name__}] Failed to read bookmarks for uid={uid}: {e}")
            raise RemoteFetchFailed(f"Could not read bookmarks for uid={uid}") from e
        return [
            BookmarkRecord(**{k: doc[k] for k in _BOOKMARK_FIELDS if k in doc})
            for doc in documents
        ]

    async def list(self, uid: str) -> QueryCacheEntry:
        """Reads the user's bookmarks through the cache. Stays idle while uid is unknown."""
        return await self._cache.use_query(
            self.key(uid),
            lambda: self._fetch_bookmarks(uid),
            enabled=bool(uid),
        )

    async def _revalidate(self, uid: str) -> None:
        key = self.key(uid)
        self._cache.invalidate(key)
        # A read that started before the write must not settle the list
        await self._cache.refetch(key, lambda: self._fetch_bookmarks(uid), cancel_refetch=True)

    async def _known_bookmarks(self, uid: str) -> Union[List[BookmarkRecord], ErrorInfo]:
        entry = self._cache.get_entry(self.key(uid))
        if not entry.is_success or entry.is_invalidated:
            entry = await self.list(uid)
        if entry.is_success:
            return entry.data
        return entry.error or ErrorInfo(ErrorKind.REMOTE_FETCH_FAILED, f"Bookmarks for uid={uid} are not available")

    async def add(self, uid: str, game: GameRecord) -> MutationResult:
        """
        Bookmarks a game unless a bookmark with the same name is already known.
        Adds for the same uid are serialized so concurrent duplicates collapse into one write.
        """
        if not uid:
            return MutationResult(ok=False, error=ErrorInfo(ErrorKind.REMOTE_WRITE_FAILED, "Cannot add a bookmark without a signed-in user"))

        name = game.get('name', '')
        async with self._lock_for(uid):
            known = await self._known_bookmarks(uid)
            if isinstance(known, ErrorInfo):
                logger.warning(f"⚠️ [{self.__class__.__name__}] Not adding '{name}': current bookmarks unavailable ({known.message})")
                return MutationResult(ok=False, error=known)

            if any(bookmark.get('name') == name for bookmark in known):
                logger.info(f"ℹ️ [{self.__class__.__name__}] '{name}' is already bookmarked for uid={uid}. Skipping.")
                return MutationResult(ok=True, written=False)

            data = {**bookmark_from_game(game), 'created_at': SERVER_TIMESTAMP}
            try:
                document_id = await self._documents.add_document(self._collection_path(uid), data)
            except Exception as e:
                logger.error(f"❌ [{self.__class__.__name__}] Failed to bookmark '{name}' for uid={uid}: {e}", exc_info=True)
                error = ErrorInfo(ErrorKind.REMOTE_WRITE_FAILED, f"Could not bookmark '{name}'", cause=e)
                return MutationResult(ok=False, error=error)

            logger.info(f"✅ [{self.__class__.__name__}] Bookmarked '{name}' for uid={uid} (document {document_id}).")
            await self._revalidate(uid)
            return MutationResult(ok=True, written=True, document_id=document_id)

    async def remove(self, uid: str, document_id: str) -> MutationResult:
        """
        Deletes a bookmark. Removing a bookmark that does not exist succeeds.
        The cached list is re-validated afterwards whether or not the delete went through.
        """
        try:
            await self._documents.delete_document(f"{self._collection_path(uid)}/{document_id}")
            result = MutationResult(ok=True, written=True, document_id=document_id)
        except Exception as e:
            logger.error(f"❌ [{self.__class__.__name__}] Failed to remove bookmark {document_id} for uid={uid}: {e}", exc_info=True)
            error = ErrorInfo(ErrorKind.REMOTE_WRITE_FAILED, f"Could not remove bookmark {document_id}", cause=e)
            result = MutationResult(ok=False, document_id=document_id, error=error)

        await self._revalidate(uid)
        return result
