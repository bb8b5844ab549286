import os
from pathlib import Path

from dotenv import load_dotenv
from platformdirs import user_config_dir, user_data_dir

load_dotenv()

# --- Version & Metadata ---
__version__ = "0.3.0"
__author__ = "anv-cli contributors"
__license__ = "MIT"

APP_NAME = "anv"

# --- Directories ---
CONFIG_DIR = Path(os.getenv("ANV_CONFIG_DIR") or user_config_dir(APP_NAME))
CONFIG_FILE = CONFIG_DIR / "config.json"
DATA_DIR = Path(user_data_dir(APP_NAME))
HISTORY_FILE = Path(os.getenv("ANV_HISTORY_FILE") or DATA_DIR / "history.json")

# --- Catalog Configuration ---
API_URL = "https://api.allanime.day/api"
BASE_URL = "https://allanime.day"
REFERER = "https://allmanga.to"
ORIGIN = "https://allanime.day"

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0 Safari/537.36"

HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": REFERER,
    "Origin": ORIGIN,
}

# Tried in this order; the first provider that yields links wins.
PREFERRED_PROVIDERS = ["Default", "S-mp4", "Luf-Mp4", "Yt-mp4"]

SEARCH_LIMIT = 25
REQUEST_TIMEOUT = 15
RETRY_TOTAL = 3
RETRY_BACKOFF = 0.5

# --- Player ---
PLAYER_ENV_KEY = "ANV_PLAYER"
DEFAULT_PLAYER = "mpv"
PLAYER_STARTUP_WINDOW = 2.0

# --- Logging ---
LOG_LEVEL = os.getenv("ANV_LOG_LEVEL", "WARNING").upper()

# --- Theme Definitions ---
THEMES = {
    "blue": {"primary": "#7eb3d4", "secondary": "#9ac9e3", "accent": "#5a9bc7", "error": "#d97979"},
    "red": {"primary": "#d97979", "secondary": "#e59393", "accent": "#c55a5a", "error": "#d97979"},
    "green": {"primary": "#8ba87f", "secondary": "#a3ba98", "accent": "#6d8a62", "error": "#d97979"},
    "purple": {"primary": "#a88dbd", "secondary": "#bda3cf", "accent": "#8a6fa0", "error": "#d97979"},
    "cyan": {"primary": "#7ebfbf", "secondary": "#9bd3d3", "accent": "#5fa3a3", "error": "#d97979"},
    "pink": {"primary": "#d9a3ba", "secondary": "#e5b8cd", "accent": "#c4859d", "error": "#d97979"},
    "orange": {"primary": "#d9a379", "secondary": "#e5b693", "accent": "#c4855a", "error": "#d97979"},
    "gold": {"primary": "#c9b87f", "secondary": "#d9ca98", "accent": "#ab9a61", "error": "#d97979"},
}

DEFAULT_THEME = "cyan"

# --- Spinners ---
SPINNERS = {
    "search": "dots2",
    "episodes": "bouncingBar",
    "streams": "star",
}
