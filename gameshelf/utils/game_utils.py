# ===== IMPORTS & DEPENDENCIES =====
import re
import logging
from datetime import date
from typing import Optional
from bs4 import BeautifulSoup

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== UTILITY FUNCTIONS =====

def clean_search_term(raw_term: Optional[str]) -> str:
    """
    Normalizes a search term before it becomes part of a cache key:
    collapses whitespace and strips leading/trailing blanks.
    An empty result means no search should be issued.
    """
    if not raw_term:
        return ""

    # Collapse multiple spaces into a single space and strip leading/trailing whitespace
    return re.sub(r'\s+', ' ', raw_term).strip()


def description_to_text(html_text: str) -> str:
    """
    Renders the catalog's rich-text description as plain text.
    The markup is only parsed, never executed.
    """
    if not html_text:
        return ""

    soup = BeautifulSoup(html_text, 'lxml')
    # Drop anything executable before extracting text
    for tag in soup(['script', 'style']):
        tag.decompose()
    clean_text = soup.get_text(separator=' ', strip=True)
    clean_text = re.sub(r'\s+', ' ', clean_text)

    return clean_text


def format_release_date(release_date: Optional[str]) -> str:
    """Formats an ISO release date as 'Apr 18, 2011'. Returns '' for missing or malformed dates."""
    if not release_date:
        return ""
    try:
        parsed = date.fromisoformat(release_date[:10])
    except ValueError:
        logger.debug(f"[format_release_date] Could not parse release date: '{release_date}'")
        return ""
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"
