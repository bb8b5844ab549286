import subprocess

import pytest

from anv.errors import CatalogEmpty, NoEpisodesAvailable, StreamUnavailable
from anv.history import HistoryStore
from anv.models import (
    Availability, EpisodeCounts, EpisodeList, SeriesMatch, StreamCandidate, TranslationMode
)
from anv.picker import Picker


def make_series(series_id="naruto", title="Naruto", sub=220, dub=220):
    return SeriesMatch(
        id=series_id,
        title=title,
        translation_available=Availability(sub=sub > 0, dub=dub > 0),
        episode_counts=EpisodeCounts(sub=sub, dub=dub),
    )


def make_candidate(quality, url=None, provider="Default", **kwargs):
    return StreamCandidate(
        url=url or f"https://cdn.example/{provider}/{quality}.m3u8",
        quality=quality,
        quality_label=f"{quality}p",
        provider=provider,
        **kwargs,
    )


class FakeCatalog:
    """In-memory stand-in for CatalogClient."""

    def __init__(self, matches=None, episodes=None, streams=None, stream_failures=0):
        self.matches = list(matches or [])
        self.episodes = dict(episodes or {})
        self.streams = list(streams or [])
        self.stream_failures = stream_failures
        self.calls = []

    def search(self, query, translation=TranslationMode.SUB):
        self.calls.append(("search", query, translation))
        if not self.matches:
            raise CatalogEmpty(query, translation.label)
        return list(self.matches)

    def list_episodes(self, series_id, translation, title=""):
        self.calls.append(("episodes", series_id, translation))
        labels = self.episodes.get((series_id, translation), [])
        if not labels:
            raise NoEpisodesAvailable(series_id, translation.label, title)
        return EpisodeList(series_id=series_id, translation=translation, episodes=labels)

    def resolve_streams(self, series_id, translation, episode):
        self.calls.append(("streams", series_id, translation, episode))
        if self.stream_failures > 0:
            self.stream_failures -= 1
            raise StreamUnavailable(series_id, translation.label, episode, "flaky provider")
        if not self.streams:
            raise StreamUnavailable(series_id, translation.label, episode, "no supported providers")
        return list(self.streams)


class ScriptedPicker(Picker):
    """Replays canned answers; records every call for inspection."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = []

    def present(self, options, prompt="❯ ", default_index=0, header=None, title=None):
        self.calls.append({
            "options": list(options),
            "prompt": prompt,
            "default_index": default_index,
            "header": header,
            "title": title,
        })
        if not self.answers:
            raise AssertionError(f"Unexpected picker call: {prompt!r} {list(options)!r}")
        answer = self.answers.pop(0)
        if answer == "default":
            return default_index
        return answer


class FakeProcess:

    def __init__(self, returncode=0, outlives_window=True, interrupted=False):
        self.returncode = returncode
        self.outlives_window = outlives_window
        self.interrupted = interrupted
        self.terminated = False

    def wait(self, timeout=None):
        if self.interrupted:
            raise KeyboardInterrupt
        if timeout is not None and self.outlives_window:
            raise subprocess.TimeoutExpired(cmd="player", timeout=timeout)
        return self.returncode

    def terminate(self):
        self.terminated = True


class FakePopen:

    def __init__(self, returncode=0, outlives_window=True, error=None, interrupted=False):
        self.returncode = returncode
        self.outlives_window = outlives_window
        self.error = error
        self.interrupted = interrupted
        self.commands = []
        self.processes = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(list(cmd))
        if self.error is not None:
            raise self.error
        proc = FakeProcess(self.returncode, self.outlives_window, self.interrupted)
        self.processes.append(proc)
        return proc


@pytest.fixture
def history_store(tmp_path):
    return HistoryStore(tmp_path / "anv" / "history.json")


@pytest.fixture
def series():
    return make_series()


@pytest.fixture(autouse=True)
def _no_player_env(monkeypatch):
    monkeypatch.delenv("ANV_PLAYER", raising=False)
