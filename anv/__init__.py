from .config import __version__, __author__, __license__
from .cli import main, AnvCLI
from .catalog import CatalogClient
from .history import HistoryStore
from .player import PlaybackLauncher

__all__ = [
    "main",
    "AnvCLI",
    "CatalogClient",
    "HistoryStore",
    "PlaybackLauncher",
    "__version__",
    "__author__",
    "__license__",
]
