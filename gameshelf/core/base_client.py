# ===== IMPORTS & DEPENDENCIES =====
import logging
import asyncio
import aiohttp
from typing import Optional, Any, Dict

from gameshelf.config import COMMON_HEADERS, REQUEST_TIMEOUT
from gameshelf.core.errors import RemoteFetchFailed

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== CORE BUSINESS LOGIC =====
class BaseWebClient:
    """A base class for stateless JSON web clients. No caching and no retries of its own."""

    def __init__(self, session: aiohttp.ClientSession, timeout: float = REQUEST_TIMEOUT):
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        logger.debug(f"[{self.__class__.__name__}] Initialized with request timeout: {timeout}s")

    async def _fetch(
        self,
        url: str,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Issues exactly one GET request and returns the decoded JSON body.
        Any transport error, timeout, non-2xx status or undecodable body raises RemoteFetchFailed.
        """
        logger.info(f"➡️ [{self.__class__.__name__}] Fetching from network: {url}")
        request_headers = headers or COMMON_HEADERS

        try:
            async with self._session.get(url, params=params, headers=request_headers, timeout=self._timeout) as response:
                response.raise_for_status()
                # content_type=None handles non-standard API content-types
                return await response.json(content_type=None)
        except aiohttp.ClientResponseError as e:
            logger.warning(f"⚠️ [{self.__class__.__name__}] HTTP error on {url}: Status {e.status}")
            raise RemoteFetchFailed(f"GET {url} returned status {e.status}") from e
        except asyncio.TimeoutError as e:
            logger.warning(f"⚠️ [{self.__class__.__name__}] Request to {url} timed out after {self._timeout.total}s")
            raise RemoteFetchFailed(f"GET {url} timed out") from e
        except aiohttp.ClientError as e:
            logger.warning(f"⚠️ [{self.__class__.__name__}] Network error on {url}: {type(e).__name__}")
            raise RemoteFetchFailed(f"GET {url} failed: {type(e).__name__}") from e
        except ValueError as e:
            logger.error(f"❌ [{self.__class__.__name__}] Invalid JSON received from {url}: {e}")
            raise RemoteFetchFailed(f"GET {url} returned invalid JSON") from e
