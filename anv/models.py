import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator


class TranslationMode(str, Enum):
    SUB = "sub"
    DUB = "dub"

    @property
    def label(self) -> str:
        return self.value.title()


def episode_key(label) -> float:
    """Numeric sort key for a catalog episode label ("12", "12.5", "SP1")."""
    if label is None:
        return float("inf")
    text = str(label).strip()
    try:
        return float(text)
    except ValueError:
        pass
    match = re.search(r"(\d+(?:\.\d+)?)", text)
    if match:
        return float(match.group(1))
    return float("inf")


def episode_identity(label):
    """What makes two labels the same episode: the number for numeric labels, else the text."""
    text = str(label).strip()
    try:
        number = float(text)
    except ValueError:
        return text
    return number if math.isfinite(number) else text


def format_episode(value) -> str:
    try:
        num = float(str(value).strip())
    except ValueError:
        return str(value).strip() or "?"
    if num.is_integer():
        return str(int(num))
    return str(num).rstrip("0").rstrip(".")


class Availability(BaseModel):
    model_config = ConfigDict(frozen=True)

    sub: bool = False
    dub: bool = False

    def has(self, mode: TranslationMode) -> bool:
        return self.dub if mode is TranslationMode.DUB else self.sub

    def modes(self) -> List[TranslationMode]:
        return [m for m in TranslationMode if self.has(m)]


class EpisodeCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    sub: int = 0
    dub: int = 0

    def for_mode(self, mode: TranslationMode) -> int:
        return self.dub if mode is TranslationMode.DUB else self.sub


class SeriesMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    translation_available: Availability = Field(default_factory=Availability)
    episode_counts: EpisodeCounts = Field(default_factory=EpisodeCounts)


class EpisodeList(BaseModel):
    model_config = ConfigDict(frozen=True)

    series_id: str
    translation: TranslationMode
    episodes: List[str] = Field(default_factory=list)

    @field_validator("episodes")
    @classmethod
    def _sorted_unique(cls, value: List[str]) -> List[str]:
        seen = set()
        unique = []
        for label in value:
            key = episode_identity(label)
            if key in seen:
                continue
            seen.add(key)
            unique.append(str(label).strip())
        return sorted(unique, key=episode_key)

    @property
    def latest(self) -> Optional[str]:
        return self.episodes[-1] if self.episodes else None

    def index_of(self, episode) -> Optional[int]:
        key = episode_identity(episode)
        for i, label in enumerate(self.episodes):
            if episode_identity(label) == key:
                return i
        return None


class StreamCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    quality: int = 0
    quality_label: str = "auto"
    container_hint: str = "mp4"
    provider: str = ""
    requires_headers: Dict[str, str] = Field(default_factory=dict)
    subtitle_track: Optional[str] = None

    @property
    def label(self) -> str:
        kind = "HLS" if self.container_hint == "hls" else "MP4"
        return f"{self.provider} {self.quality_label} ({kind})".strip()


class PlaybackSpec(BaseModel):
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    subtitle_path: Optional[str] = None
    media_title: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Validation also accepts snake_case keys and the legacy {"entries": [...]} field names.
    series_id: str = Field(alias="seriesId", validation_alias=AliasChoices("seriesId", "series_id", "show_id"))
    title: str = Field("", alias="title", validation_alias=AliasChoices("title", "show_title"))
    translation_mode: TranslationMode = Field(
        alias="translationMode", validation_alias=AliasChoices("translationMode", "translation_mode", "translation")
    )
    last_episode: float = Field(alias="lastEpisode", validation_alias=AliasChoices("lastEpisode", "last_episode", "episode"))
    updated_at: datetime = Field(
        default_factory=_utcnow, alias="updatedAt", validation_alias=AliasChoices("updatedAt", "updated_at", "watched_at")
    )

    @field_validator("last_episode", mode="before")
    @classmethod
    def _parse_episode(cls, value):
        if isinstance(value, str):
            return float(value.strip())
        return value

    @field_validator("updated_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_serializer("last_episode")
    def _dump_episode(self, value: float):
        return int(value) if float(value).is_integer() else value

    @property
    def key(self):
        return (self.series_id, self.translation_mode)

    @property
    def episode_label(self) -> str:
        return format_episode(self.last_episode)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class LaunchResult(BaseModel):
    command: List[str]
    returncode: int
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0
