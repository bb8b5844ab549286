import asyncio
import logging
import math
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import RETRY_BACKOFF, RETRY_TOTAL
from .errors import CatalogUnreachable, NoEpisodesAvailable, StreamUnavailable
from .history import HistoryStore
from .machine import (
    Cancel, EpisodeChosen, EpisodesLoaded, Finish, MatchesLoaded, Origin, Selection,
    SeriesChosen, Stage, StreamsResolved, TranslationChosen,
    auto_translation, next_episode, resume_index, transition, translation_choices,
)
from .models import HistoryEntry, LaunchResult, SeriesMatch, episode_key, format_episode
from .negotiator import negotiate, rank
from .picker import Picker
from .player import PlaybackLauncher

logger = logging.getLogger(__name__)


def _settle(future: asyncio.Future, result, error):
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


async def run_detached(fn, *args):
    """Run a blocking call on a daemon thread and await its result.

    Cancelling the awaiting task abandons the call: neither the event loop
    nor interpreter shutdown waits for the thread to finish.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def work():
        try:
            result, error = fn(*args), None
        except Exception as e:
            result, error = None, e
        try:
            loop.call_soon_threadsafe(_settle, future, result, error)
        except RuntimeError:
            # Loop already closed; nobody is waiting any more.
            logger.debug("Dropping result of abandoned %s", getattr(fn, "__name__", fn))

    threading.Thread(target=work, name="anv-catalog", daemon=True).start()
    return await future


class Reporter:
    """Where the flow sends progress and notices. Silent by default."""

    def info(self, message: str):
        pass

    def warn(self, message: str):
        pass

    @contextmanager
    def status(self, message: str, spinner: str = "dots2"):
        yield


class SelectionFlow:

    def __init__(
        self,
        catalog,
        history: HistoryStore,
        picker: Picker,
        reporter: Optional[Reporter] = None,
        pick_stream: bool = False,
        retries: int = RETRY_TOTAL,
        backoff: float = RETRY_BACKOFF,
        history_limit: int = 50,
    ):
        self.catalog = catalog
        self.history = history
        self.picker = picker
        self.reporter = reporter or Reporter()
        self.pick_stream = pick_stream
        self.retries = max(1, retries)
        self.backoff = backoff
        self.history_limit = history_limit

    async def _call(self, message: str, spinner: str, fn, *args):
        with self.reporter.status(message, spinner):
            return await run_detached(fn, *args)

    async def run(self, sel: Selection) -> Selection:
        """Drive the machine until it resolves a stream or is cancelled."""
        while sel.stage not in (Stage.RESOLVED, Stage.CANCELLED, Stage.FINISHED):
            sel = await self.step(sel)
        return sel

    async def step(self, sel: Selection) -> Selection:
        if sel.stage is Stage.SEARCH_PROMPT:
            if sel.origin is Origin.HISTORY:
                return self._pick_from_history(sel)
            return await self._pick_series(sel)
        if sel.stage is Stage.SERIES_PICKED:
            return self._pick_translation(sel)
        if sel.stage is Stage.TRANSLATION_PICKED:
            return await self._pick_episode(sel)
        if sel.stage is Stage.EPISODE_PICKED:
            return await self._resolve(sel)
        return sel

    def _pick_from_history(self, sel: Selection) -> Selection:
        entries = self.history.list_recent(self.history_limit)
        if not entries:
            self.reporter.info("History is empty.")
            return transition(sel, Cancel())

        labels = [
            f"[{e.translation_mode.label}] {e.title or e.series_id} · episode {e.episode_label}"
            f" · watched {e.updated_at.astimezone().strftime('%Y-%m-%d %H:%M')}"
            for e in entries
        ]
        idx = self.picker.present(
            labels, prompt="🕘 History ❯ ", title="🕘 Continue watching",
            header=f"📊 {len(entries)} entries",
        )
        if idx is None:
            return transition(sel, Cancel())

        entry = entries[idx]
        series = SeriesMatch(id=entry.series_id, title=entry.title or entry.series_id)
        return transition(sel, SeriesChosen(series=series, translation=entry.translation_mode))

    async def _pick_series(self, sel: Selection) -> Selection:
        if not sel.matches:
            # CatalogEmpty propagates: nothing was chosen, nothing is recorded.
            matches = await self._call(
                "Searching...", "search", self.catalog.search, sel.query, sel.preferred
            )
            sel = transition(sel, MatchesLoaded(matches=matches))

        def fmt(show: SeriesMatch) -> str:
            count = show.episode_counts.for_mode(sel.preferred)
            return f"{show.title} [{count} episodes]"

        count = len(sel.matches)
        idx = self.picker.present(
            [fmt(m) for m in sel.matches],
            prompt="🎯 Select ❯ ",
            title=f"🔍 Results for \"{sel.query}\" ({sel.preferred.label})",
            header=f"📊 {count} {'match' if count == 1 else 'matches'}",
        )
        if idx is None:
            return transition(sel, Cancel())
        return transition(sel, SeriesChosen(series=sel.matches[idx]))

    def _pick_translation(self, sel: Selection) -> Selection:
        mode = auto_translation(sel)
        if mode is not None:
            return transition(sel, TranslationChosen(translation=mode))

        modes, default = translation_choices(sel)
        if not sel.backtracked and sel.preferred not in modes:
            self.reporter.warn(f"No {sel.preferred.label} episodes for {sel.series.title}.")

        counts = sel.series.episode_counts
        labels = []
        for m in modes:
            n = counts.for_mode(m)
            labels.append(f"{m.label} ({n} episodes)" if n else m.label)

        idx = self.picker.present(
            labels, prompt="🗣  Translation ❯ ", default_index=default,
            title=f"📺 {sel.series.title}",
        )
        if idx is None:
            return transition(sel, Cancel())
        return transition(sel, TranslationChosen(translation=modes[idx]))

    async def _pick_episode(self, sel: Selection) -> Selection:
        if sel.episodes is None:
            try:
                episodes = await self._call(
                    "Loading episodes...", "episodes",
                    self.catalog.list_episodes, sel.series.id, sel.translation, sel.series.title,
                )
            except NoEpisodesAvailable as e:
                other = [m for m in translation_choices(sel)[0] if m != sel.translation]
                hint = f" Try {other[0].label} instead." if other else ""
                self.reporter.warn(f"{e}.{hint}")
                return transition(sel, Cancel())
            resume = self.history.find_entry(sel.series.id, sel.translation)
            sel = transition(sel, EpisodesLoaded(episodes=episodes, resume=resume))

        episodes = sel.episodes.episodes
        default = resume_index(sel.episodes, sel.resume)
        watched = sel.resume.last_episode if sel.resume else None

        def fmt(label: str) -> str:
            mark = " ✓" if watched is not None and episode_key(label) <= watched else ""
            return f"📺 Episode {format_episode(label)}{mark}"

        header = f"📊 {len(episodes)} episodes · latest {format_episode(sel.episodes.latest)}"
        if sel.resume:
            header += f" · last watched {sel.resume.episode_label}"

        idx = self.picker.present(
            [fmt(ep) for ep in episodes],
            prompt="📺 Episode ❯ ", default_index=default, header=header,
            title=f"📺 {sel.series.title} ({sel.translation.label})",
        )
        if idx is None:
            return transition(sel, Cancel())
        return transition(sel, EpisodeChosen(episode=episodes[idx]))

    async def resolve_with_retry(self, series_id, translation, episode):
        last_error = None
        for attempt in range(self.retries):
            try:
                return await self._call(
                    "Getting stream...", "streams",
                    self.catalog.resolve_streams, series_id, translation, episode,
                )
            except (StreamUnavailable, CatalogUnreachable) as e:
                last_error = e
                logger.debug("Stream lookup attempt %d/%d failed: %s", attempt + 1, self.retries, e)
                if attempt + 1 < self.retries and self.backoff > 0:
                    await asyncio.sleep(self.backoff * (2 ** attempt))
        raise last_error

    async def _resolve(self, sel: Selection) -> Selection:
        try:
            candidates = await self.resolve_with_retry(sel.series.id, sel.translation, sel.episode)
        except StreamUnavailable as e:
            self.reporter.warn(f"{e}. Try another episode or rerun later.")
            return transition(sel, Cancel())

        if self.pick_stream and len(candidates) > 1:
            ranked = rank(candidates)
            idx = self.picker.present(
                [c.label for c in ranked], prompt="📡 Stream ❯ ",
                title=f"📺 {sel.series.title} · Episode {format_episode(sel.episode)}",
            )
            if idx is None:
                return transition(sel, Cancel())
            candidates = [ranked[idx]]

        return transition(sel, StreamsResolved(candidates=candidates))

    def after_playback(self, sel: Selection) -> Selection:
        """Offer the next episode, the episode list, or quitting."""
        upcoming = next_episode(sel)
        if upcoming is None:
            self.reporter.info("🏁 That was the latest episode.")
            options = ["📋 Back to episodes", "🚪 Quit"]
            actions = ["episodes", "quit"]
        else:
            options = [f"▶️  Play next episode ({format_episode(upcoming)})", "📋 Back to episodes", "🚪 Quit"]
            actions = ["next", "episodes", "quit"]

        idx = self.picker.present(options, prompt="❯ ", title="What's next?", header="Choose an action")
        action = actions[idx] if idx is not None else "quit"

        if action == "next":
            return transition(sel, EpisodeChosen(episode=upcoming))
        if action == "episodes":
            back = transition(sel, Cancel())
            resume = self.history.find_entry(sel.series.id, sel.translation)
            return transition(back, EpisodesLoaded(episodes=sel.episodes, resume=resume))
        return transition(sel, Finish())


def media_title(sel: Selection) -> str:
    return f"{sel.series.title} - Episode {format_episode(sel.episode)}"


def play(
    sel: Selection,
    launcher: PlaybackLauncher,
    history: HistoryStore,
    player_command: str,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> LaunchResult:
    """Negotiate, launch and record progress once the player has started."""
    spec = negotiate(sel.candidates, media_title=media_title(sel))
    number = episode_key(sel.episode)

    def record():
        if not math.isfinite(number):
            logger.warning("Not recording non-numeric episode %r", sel.episode)
            return
        history.upsert(HistoryEntry(
            series_id=sel.series.id,
            title=sel.series.title,
            translation_mode=sel.translation,
            last_episode=number,
            updated_at=clock(),
        ))

    return launcher.launch(spec, player_command, on_started=record)
