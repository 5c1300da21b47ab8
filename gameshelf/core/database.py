# ===== IMPORTS & DEPENDENCIES =====
import asyncio
import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from gameshelf.config import DATABASE_PATH

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Sentinel replaced by the store's own clock when a document is written."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def _split_document_path(path: str) -> Tuple[str, str]:
    """'users/abc/bookmarks/xyz' -> ('users/abc/bookmarks', 'xyz')"""
    parts = [p for p in path.strip('/').split('/') if p]
    if len(parts) < 2 or len(parts) % 2 != 0:
        raise ValueError(f"Not a document path: '{path}'")
    return '/'.join(parts[:-1]), parts[-1]


def _validate_collection_path(path: str) -> str:
    parts = [p for p in path.strip('/').split('/') if p]
    if not parts or len(parts) % 2 != 1:
        raise ValueError(f"Not a collection path: '{path}'")
    return '/'.join(parts)


# ===== CORE BUSINESS LOGIC =====
class DocumentDatabase:
    """
    Path-addressed document collections backed by SQLite.
    Documents live at '<collection>/<id>' (e.g. 'users/{uid}' or 'users/{uid}/bookmarks/{id}').
    Ids and `created_at` timestamps are assigned by the store. Every public method is async
    and runs the blocking SQLite work in a worker thread.
    """

    def __init__(self, db_path: str = DATABASE_PATH):
        self.db_path = db_path
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._create_tables()
        logger.info(f"[{self.__class__.__name__}] Database initialized at: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Returns a new database connection."""
        return sqlite3.connect(self.db_path)

    def _create_tables(self) -> None:
        """Creates required tables if they don't exist."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
            """)
            conn.commit()
            logger.info(f"[{self.__class__.__name__}] Database tables verified/created.")

    def _resolve_sentinels(self, data: Dict[str, Any], now: str) -> Dict[str, Any]:
        return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in data.items()}

    def _row_to_document(self, doc_id: str, raw: str) -> Dict[str, Any]:
        document = json.loads(raw)
        document['document_id'] = doc_id
        return document

    # --- Blocking implementations ---
    def _get_document_sync(self, path: str) -> Optional[Dict[str, Any]]:
        collection, doc_id = _split_document_path(path)
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id)
            )
            row = cursor.fetchone()
        return self._row_to_document(doc_id, row[0]) if row else None

    def _create_if_absent_sync(self, path: str, data: Dict[str, Any]) -> bool:
        collection, doc_id = _split_document_path(path)
        now = datetime.now(timezone.utc).isoformat()
        payload = json.dumps(self._resolve_sentinels(data, now), ensure_ascii=False)
        with self._get_connection() as conn:
            # INSERT OR IGNORE makes the existence check and the write a single atomic statement
            cursor = conn.execute(
                "INSERT OR IGNORE INTO documents (collection, doc_id, data, created_at) VALUES (?, ?, ?, ?)",
                (collection, doc_id, payload, now)
            )
            conn.commit()
            return cursor.rowcount > 0

    def _add_document_sync(self, collection_path: str, data: Dict[str, Any]) -> str:
        collection = _validate_collection_path(collection_path)
        doc_id = uuid.uuid4().hex
        now = datetime.now(timezone.utc).isoformat()
        payload = json.dumps(self._resolve_sentinels(data, now), ensure_ascii=False)
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO documents (collection, doc_id, data, created_at) VALUES (?, ?, ?, ?)",
                (collection, doc_id, payload, now)
            )
            conn.commit()
        return doc_id

    def _delete_document_sync(self, path: str) -> bool:
        collection, doc_id = _split_document_path(path)
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id)
            )
            conn.commit()
            return cursor.rowcount > 0

    def _list_documents_sync(self, collection_path: str) -> List[Dict[str, Any]]:
        collection = _validate_collection_path(collection_path)
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY created_at, rowid",
                (collection,)
            )
            return [self._row_to_document(doc_id, raw) for doc_id, raw in cursor.fetchall()]

    # --- Public async API ---
    async def get_document(self, path: str) -> Optional[Dict[str, Any]]:
        """Returns the document at `path` with its `document_id`, or None if it does not exist."""
        return await asyncio.to_thread(self._get_document_sync, path)

    async def create_document_if_absent(self, path: str, data: Dict[str, Any]) -> bool:
        """Creates the document only if nothing exists at `path`. Returns True if it was created."""
        created = await asyncio.to_thread(self._create_if_absent_sync, path, data)
        if created:
            logger.info(f"[{self.__class__.__name__}] Created document: {path}")
        else:
            logger.debug(f"[{self.__class__.__name__}] Document already exists, left untouched: {path}")
        return created

    async def add_document(self, collection_path: str, data: Dict[str, Any]) -> str:
        """Adds a document with a store-assigned id to a collection and returns the id."""
        doc_id = await asyncio.to_thread(self._add_document_sync, collection_path, data)
        logger.info(f"[{self.__class__.__name__}] Added document {doc_id} to {collection_path}")
        return doc_id

    async def delete_document(self, path: str) -> bool:
        """Deletes the document at `path`. Deleting a missing document is not an error."""
        deleted = await asyncio.to_thread(self._delete_document_sync, path)
        if deleted:
            logger.info(f"[{self.__class__.__name__}] Deleted document: {path}")
        else:
            logger.warning(f"[{self.__class__.__name__}] No document found to delete at: {path}")
        return deleted

    async def list_documents(self, collection_path: str) -> List[Dict[str, Any]]:
        """Lists a collection's documents in creation order."""
        return await asyncio.to_thread(self._list_documents_sync, collection_path)
