from typing import List, Optional, Sequence

from .errors import NoCandidates
from .models import PlaybackSpec, StreamCandidate


def rank(candidates: Sequence[StreamCandidate]) -> List[StreamCandidate]:
    """Best first. sorted() is stable, so equal qualities keep provider order."""
    return sorted(candidates, key=lambda c: -c.quality)


def choose(candidates: Sequence[StreamCandidate]) -> StreamCandidate:
    best = None
    for candidate in candidates:
        if best is None or candidate.quality > best.quality:
            best = candidate
    if best is None:
        raise NoCandidates()
    return best


def to_spec(candidate: StreamCandidate, media_title: Optional[str] = None) -> PlaybackSpec:
    return PlaybackSpec(
        url=candidate.url,
        headers=dict(candidate.requires_headers),
        subtitle_path=candidate.subtitle_track,
        media_title=media_title,
    )


def negotiate(candidates: Sequence[StreamCandidate], media_title: Optional[str] = None) -> PlaybackSpec:
    return to_spec(choose(candidates), media_title)
