"""Typed failures raised by the catalog, history and player layers.

Only the command line front end turns these into messages and exit codes.
"""
from typing import Optional


class AnvError(Exception):
    """Base class for every failure anv knows how to report."""


class TransportError(AnvError):
    pass


class CatalogUnreachable(TransportError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundCondition(AnvError):
    """Nothing to show or play. Not a bug and not a network failure."""


class CatalogEmpty(NotFoundCondition):
    def __init__(self, query: str, translation: str):
        super().__init__(f'No results for "{query}" ({translation})')
        self.query = query
        self.translation = translation


class NoEpisodesAvailable(NotFoundCondition):
    def __init__(self, series_id: str, translation: str, title: str = ""):
        name = title or series_id
        super().__init__(f"No {translation} episodes available for {name}")
        self.series_id = series_id
        self.translation = translation


class StreamUnavailable(NotFoundCondition):
    def __init__(self, series_id: str, translation: str, episode: str, reason: str = ""):
        message = f"No working stream for episode {episode} ({translation})"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.series_id = series_id
        self.translation = translation
        self.episode = episode


class NoCandidates(NotFoundCondition):
    def __init__(self):
        super().__init__("No stream candidates to choose from")


class DataCorruption(AnvError):
    pass


class CorruptHistory(DataCorruption):
    def __init__(self, path, reason: str):
        super().__init__(f"History file {path} is unreadable: {reason}")
        self.path = path


class PlayerEnvironmentError(AnvError):
    pass


class PlayerNotFound(PlayerEnvironmentError):
    def __init__(self, player: str, env_key: str):
        super().__init__(
            f"Player '{player}' not found. Install mpv or set {env_key} to a valid command."
        )
        self.player = player


class PlaybackWarning(AnvError):
    pass


class PlayerExitedAbnormally(PlaybackWarning):
    def __init__(self, result):
        super().__init__(f"Player exited with status {result.returncode}")
        self.result = result


class UserCancellation(AnvError):
    pass


class InvalidTransition(AnvError):
    pass
