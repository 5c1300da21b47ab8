# ===== IMPORTS & DEPENDENCIES =====
import asyncio
import logging
from typing import Optional

from gameshelf.config import SEARCH_DEBOUNCE_SECONDS
from gameshelf.utils.game_utils import clean_search_term

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== CORE BUSINESS LOGIC =====
class SearchDebouncer:
    """
    Turns a stream of keystroke-level search terms into settled terms.
    A term is only released after `delay` seconds pass without a newer term.
    """

    def __init__(self, delay: float = SEARCH_DEBOUNCE_SECONDS):
        self._delay = delay
        self._generation = 0

    async def settle(self, raw_term: str) -> Optional[str]:
        """
        Waits out the quiescence window for `raw_term`.
        Returns the cleaned term if no newer term arrived meanwhile, otherwise None.
        """
        self._generation += 1
        generation = self._generation
        await asyncio.sleep(self._delay)

        if generation != self._generation:
            logger.debug(f"[{self.__class__.__name__}] Term '{raw_term}' superseded before settling.")
            return None
        return clean_search_term(raw_term)
