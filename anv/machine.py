"""Selection state machine: search -> series -> translation -> episode -> resolved.

Everything here is pure. ``transition`` takes a ``Selection`` and an event and
returns a new ``Selection``; the interactive driver lives in ``flow.py``.

Cancel always steps back exactly one stage. Cancelling the search prompt
ends the whole flow; that is a normal exit, not an error.
"""
import math
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidTransition
from .models import (
    EpisodeList, HistoryEntry, SeriesMatch, StreamCandidate, TranslationMode, episode_key
)


class Stage(str, Enum):
    SEARCH_PROMPT = "search_prompt"
    SERIES_PICKED = "series_picked"
    TRANSLATION_PICKED = "translation_picked"
    EPISODE_PICKED = "episode_picked"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    FINISHED = "finished"


TERMINAL = (Stage.CANCELLED, Stage.FINISHED)


class Origin(str, Enum):
    SEARCH = "search"
    HISTORY = "history"


class Selection(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: Stage = Stage.SEARCH_PROMPT
    origin: Origin = Origin.SEARCH
    query: str = ""
    preferred: TranslationMode = TranslationMode.SUB
    matches: List[SeriesMatch] = Field(default_factory=list)
    series: Optional[SeriesMatch] = None
    translation: Optional[TranslationMode] = None
    episodes: Optional[EpisodeList] = None
    resume: Optional[HistoryEntry] = None
    episode: Optional[str] = None
    candidates: List[StreamCandidate] = Field(default_factory=list)
    backtracked: bool = False

    @classmethod
    def from_search(cls, query: str, preferred: TranslationMode = TranslationMode.SUB) -> "Selection":
        return cls(query=query, preferred=preferred)

    @classmethod
    def from_history(cls, preferred: TranslationMode = TranslationMode.SUB) -> "Selection":
        return cls(origin=Origin.HISTORY, preferred=preferred)

    @property
    def done(self) -> bool:
        return self.stage in TERMINAL


# --- Events ---

class Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class Cancel(Event):
    pass


class Finish(Event):
    pass


class MatchesLoaded(Event):
    matches: List[SeriesMatch]


class SeriesChosen(Event):
    series: SeriesMatch
    # Set when resuming from history: the mode is already known.
    translation: Optional[TranslationMode] = None


class TranslationChosen(Event):
    translation: TranslationMode


class EpisodesLoaded(Event):
    episodes: EpisodeList
    resume: Optional[HistoryEntry] = None


class EpisodeChosen(Event):
    episode: str


class StreamsResolved(Event):
    candidates: List[StreamCandidate]


def _back(sel: Selection) -> Selection:
    if sel.stage is Stage.SEARCH_PROMPT:
        return sel.model_copy(update={"stage": Stage.CANCELLED})
    if sel.stage is Stage.SERIES_PICKED:
        return sel.model_copy(update={
            "stage": Stage.SEARCH_PROMPT, "series": None, "translation": None,
            "episodes": None, "resume": None, "backtracked": True,
        })
    if sel.stage is Stage.TRANSLATION_PICKED:
        return sel.model_copy(update={
            "stage": Stage.SERIES_PICKED, "translation": None, "episodes": None,
            "resume": None, "episode": None, "backtracked": True,
        })
    # EPISODE_PICKED and RESOLVED both return to the episode list, which is kept.
    return sel.model_copy(update={
        "stage": Stage.TRANSLATION_PICKED, "episode": None, "candidates": [], "backtracked": True,
    })


def _reject(sel: Selection, event: Event):
    raise InvalidTransition(f"{type(event).__name__} is not valid in stage {sel.stage.value}")


def transition(sel: Selection, event: Event) -> Selection:
    if sel.stage in TERMINAL:
        _reject(sel, event)

    if isinstance(event, Cancel):
        return _back(sel)

    stage = sel.stage
    if stage is Stage.SEARCH_PROMPT:
        if isinstance(event, MatchesLoaded):
            return sel.model_copy(update={"matches": list(event.matches)})
        if isinstance(event, SeriesChosen):
            if event.translation is not None:
                return sel.model_copy(update={
                    "stage": Stage.TRANSLATION_PICKED, "series": event.series,
                    "translation": event.translation, "preferred": event.translation,
                    "episodes": None, "resume": None, "backtracked": False,
                })
            return sel.model_copy(update={
                "stage": Stage.SERIES_PICKED, "series": event.series, "backtracked": False,
            })

    elif stage is Stage.SERIES_PICKED:
        if isinstance(event, TranslationChosen):
            return sel.model_copy(update={
                "stage": Stage.TRANSLATION_PICKED, "translation": event.translation,
                "episodes": None, "resume": None, "backtracked": False,
            })

    elif stage is Stage.TRANSLATION_PICKED:
        if isinstance(event, EpisodesLoaded):
            return sel.model_copy(update={"episodes": event.episodes, "resume": event.resume})
        if isinstance(event, EpisodeChosen):
            if sel.episodes is None or sel.episodes.index_of(event.episode) is None:
                raise InvalidTransition(f"Episode {event.episode} is not in the episode list")
            return sel.model_copy(update={
                "stage": Stage.EPISODE_PICKED, "episode": event.episode, "backtracked": False,
            })

    elif stage is Stage.EPISODE_PICKED:
        if isinstance(event, StreamsResolved):
            if not event.candidates:
                raise InvalidTransition("Cannot resolve with zero stream candidates")
            return sel.model_copy(update={
                "stage": Stage.RESOLVED, "candidates": list(event.candidates),
            })

    elif stage is Stage.RESOLVED:
        if isinstance(event, EpisodeChosen):
            if sel.episodes is None or sel.episodes.index_of(event.episode) is None:
                raise InvalidTransition(f"Episode {event.episode} is not in the episode list")
            return sel.model_copy(update={
                "stage": Stage.EPISODE_PICKED, "episode": event.episode, "candidates": [],
            })
        if isinstance(event, Finish):
            return sel.model_copy(update={"stage": Stage.FINISHED})

    _reject(sel, event)


# --- Pure helpers used by the driver ---

def resume_index(episodes: EpisodeList, entry: Optional[HistoryEntry]) -> int:
    """Index to highlight in the episode picker.

    The last watched episode if it is listed, else the first later one, else
    the newest. Without history, the first episode.
    """
    if not episodes.episodes or entry is None:
        return 0
    last = entry.last_episode
    if not math.isfinite(last):
        return 0
    for i, label in enumerate(episodes.episodes):
        if episode_key(label) >= last:
            return i
    return len(episodes.episodes) - 1


def next_episode(sel: Selection) -> Optional[str]:
    if sel.episodes is None or sel.episode is None:
        return None
    idx = sel.episodes.index_of(sel.episode)
    if idx is None or idx + 1 >= len(sel.episodes.episodes):
        return None
    return sel.episodes.episodes[idx + 1]


def translation_choices(sel: Selection) -> Tuple[List[TranslationMode], int]:
    """Modes to offer for the chosen series and the index to highlight."""
    modes = sel.series.translation_available.modes() if sel.series else []
    if not modes:
        # Availability unknown (series reopened from history): offer both.
        modes = list(TranslationMode)
    default = modes.index(sel.preferred) if sel.preferred in modes else 0
    return modes, default


def auto_translation(sel: Selection) -> Optional[TranslationMode]:
    """The preferred mode when it can be taken without asking, else None."""
    if sel.backtracked:
        return None
    modes, _ = translation_choices(sel)
    return sel.preferred if sel.preferred in modes else None
