# ===== CONFIGURATION & CONSTANTS =====
import os

# --- General Settings ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DATABASE_PATH = os.getenv("GAMESHELF_DATABASE_PATH", "data/gameshelf.db")
WEB_DATA_DIR = "web_data"
SNAPSHOT_FILE = "query_snapshot.json"

# Comma separated list of game slugs to prefetch when running main.py
PREFETCH_SLUGS = [s.strip() for s in os.getenv("PREFETCH_SLUGS", "").split(",") if s.strip()]

# --- RAWG Catalog API ---
RAWG_API_BASE_URL = os.getenv("RAWG_API_BASE_URL", "https://api.rawg.io/api").rstrip("/")
RAWG_API_KEY = os.getenv("RAWG_API_KEY", "")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "25"))

# --- HTTP Headers ---
COMMON_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept': 'application/json, text/plain, */*',
    'Accept-Encoding': 'gzip, deflate, br',
    'Connection': 'keep-alive'
}

# --- Query Cache ---
QUERY_STALE_TIME = float(os.getenv("QUERY_STALE_TIME", "300"))  # 5 minutes in seconds
QUERY_RETRY_INITIAL_DELAY = 2.0
SEARCH_DEBOUNCE_SECONDS = 0.3

# Namespaces used to build ResourceKeys
GAME_NAMESPACE = "getGame"
SCREENSHOTS_NAMESPACE = "getScreens"
SEARCH_NAMESPACE = "search"
BOOKMARKS_NAMESPACE = "bookmarks"

# --- Document Store ---
USERS_COLLECTION = "users"
BOOKMARKS_SUBCOLLECTION = "bookmarks"
