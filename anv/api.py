import shlex
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .catalog import CatalogClient
from .config import __version__, API_URL
from .errors import NotFoundCondition, TransportError
from .history import HistoryStore
from .models import HistoryEntry, PlaybackSpec, SeriesMatch, TranslationMode, format_episode
from .negotiator import choose, to_spec
from .player import build_command, detect_player


class EpisodesResponse(BaseModel):
    series_id: str
    translation: TranslationMode
    episodes: List[str]
    resume_from: Optional[str] = None


class StreamSource(BaseModel):
    spec: PlaybackSpec
    provider: str
    quality: str
    candidates: int
    player_command: str


_catalog: Optional[CatalogClient] = None


def get_catalog() -> CatalogClient:
    global _catalog
    if _catalog is None:
        _catalog = CatalogClient()
    return _catalog


def get_history() -> HistoryStore:
    return HistoryStore()


app = FastAPI(
    title="anv API",
    description="REST API for AllAnime search and stream resolution",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _call(fn, *args):
    try:
        return await run_in_threadpool(fn, *args)
    except NotFoundCondition as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransportError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/health")
async def health_check():
    return {"status": "ok", "catalog": API_URL, "version": __version__}


@app.get("/search", response_model=List[SeriesMatch])
async def search(
    q: str = Query(..., min_length=1),
    mode: TranslationMode = Query(TranslationMode.SUB),
    catalog: CatalogClient = Depends(get_catalog),
):
    return await _call(catalog.search, q, mode)


@app.get("/episodes", response_model=EpisodesResponse)
async def list_episodes(
    id: str = Query(..., min_length=1),
    mode: TranslationMode = Query(TranslationMode.SUB),
    catalog: CatalogClient = Depends(get_catalog),
    history: HistoryStore = Depends(get_history),
):
    episodes = await _call(catalog.list_episodes, id, mode)
    entry = history.find_entry(id, mode)
    return EpisodesResponse(
        series_id=id,
        translation=mode,
        episodes=episodes.episodes,
        resume_from=entry.episode_label if entry else None,
    )


@app.get("/stream/resolve", response_model=StreamSource)
async def resolve_stream(
    id: str = Query(..., min_length=1),
    episode: str = Query(..., min_length=1),
    mode: TranslationMode = Query(TranslationMode.SUB),
    title: Optional[str] = Query(None),
    catalog: CatalogClient = Depends(get_catalog),
):
    candidates = await _call(catalog.resolve_streams, id, mode, episode)
    media_title = f"{title} - Episode {format_episode(episode)}" if title else None
    try:
        chosen = choose(candidates)
    except NotFoundCondition as e:
        raise HTTPException(status_code=404, detail=str(e))

    spec = to_spec(chosen, media_title)
    return StreamSource(
        spec=spec,
        provider=chosen.provider,
        quality=chosen.quality_label,
        candidates=len(candidates),
        player_command=shlex.join(build_command(spec, detect_player())),
    )


@app.get("/history", response_model=List[Dict])
async def recent_history(
    limit: int = Query(20, ge=1, le=500),
    history: HistoryStore = Depends(get_history),
):
    entries: List[HistoryEntry] = history.list_recent(limit)
    return [e.to_json() for e in entries]


def serve(host: str = "127.0.0.1", port: int = 8000):
    import uvicorn
    uvicorn.run(app, host=host, port=port)
