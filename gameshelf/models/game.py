# ===== TYPES & INTERFACES =====

from typing import TypedDict, List, Optional, Any


class Genre(TypedDict):
    name: str
    slug: str


class RatingShare(TypedDict):
    label: str
    percent: float


class GameRecord(TypedDict, total=False):
    """
    Defines the structure of a catalog game as served to callers of the query cache.
    `total=False` means keys are optional, since the catalog frequently omits
    genres, platforms and ratings for lesser known titles.

    Attributes:
        id (int): The catalog identifier.
        slug (str): The URL-safe identifier used for lookups.
        name (str): The display name of the game.
        release_date (Optional[str]): ISO date string (e.g., '2011-04-18').
        release_date_label (str): Display form of the release date (e.g., 'Apr 18, 2011'), '' when unknown.
        description (Optional[str]): Rich-text (HTML) description. Opaque: never executed.
        description_text (Optional[str]): Plain-text rendering of the description.
        hero_image_url (Optional[str]): URL of the background/hero image.

        genres (List[Genre]): Genres as {name, slug} pairs.
        platforms (List[str]): Parent platform names (e.g., 'PC', 'Xbox').

        rating (Optional[float]): Average user rating.
        rating_top (Optional[int]): The top of the rating scale.
        metacritic_score (Optional[int]): The critic score from Metacritic (0-100).
        rating_breakdown (List[RatingShare]): Ordered {label, percent} shares.

        website_url (Optional[str]): Official website.
        reddit_url (Optional[str]): Subreddit URL.
    """
    # Core fields
    id: int
    slug: str
    name: str
    release_date: Optional[str]
    release_date_label: str
    description: Optional[str]
    description_text: Optional[str]
    hero_image_url: Optional[str]

    # Classification
    genres: List[Genre]
    platforms: List[str]

    # Ratings
    rating: Optional[float]
    rating_top: Optional[int]
    metacritic_score: Optional[int]
    rating_breakdown: List[RatingShare]

    # Links
    website_url: Optional[str]
    reddit_url: Optional[str]


class ScreenshotRecord(TypedDict):
    image_url: str


class BookmarkRecord(TypedDict, total=False):
    """
    A bookmarked game as stored in `users/{uid}/bookmarks`.
    Created on add, destroyed on remove, never otherwise mutated.
    `created_at` is assigned by the document store.
    """
    document_id: str
    name: str
    slug: str
    hero_image_url: Optional[str]
    release_date: Optional[str]
    genres: List[Genre]
    created_at: Any


def bookmark_from_game(game: GameRecord) -> BookmarkRecord:
    """Builds the stored bookmark fields from a catalog game."""
    return BookmarkRecord(
        name=game.get('name', ''),
        slug=game.get('slug', ''),
        hero_image_url=game.get('hero_image_url'),
        release_date=game.get('release_date'),
        genres=list(game.get('genres') or []),
    )
