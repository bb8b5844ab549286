import json
from datetime import datetime, timedelta, timezone

import pytest

from anv.errors import CorruptHistory
from anv.history import HistoryFile, HistoryStore
from anv.models import HistoryEntry, TranslationMode

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def entry(series_id="naruto", mode=TranslationMode.SUB, episode=5, at=T0, title="Naruto"):
    return HistoryEntry(
        series_id=series_id, title=title, translation_mode=mode,
        last_episode=episode, updated_at=at,
    )


def test_missing_file_loads_empty(history_store):
    assert len(history_store.load()) == 0
    assert history_store.list_recent() == []


def test_upsert_round_trip(history_store):
    history_store.upsert(entry(episode=3))
    found = history_store.find_entry("naruto", TranslationMode.SUB)
    assert found.last_episode == 3
    assert found.title == "Naruto"
    assert found.updated_at == T0


def test_upsert_same_key_keeps_one_entry(history_store):
    history_store.upsert(entry(episode=5, at=T0))
    later = T0 + timedelta(minutes=30)
    history_store.upsert(entry(episode=5, at=later))

    entries = history_store.load().entries
    assert len(entries) == 1
    assert entries[0].updated_at == later


def test_sub_and_dub_are_tracked_separately(history_store):
    history_store.upsert(entry(mode=TranslationMode.SUB, episode=12))
    history_store.upsert(entry(mode=TranslationMode.DUB, episode=4))

    assert history_store.find_entry("naruto", TranslationMode.SUB).last_episode == 12
    assert history_store.find_entry("naruto", TranslationMode.DUB).last_episode == 4
    assert len(history_store.load()) == 2


def test_list_recent_orders_by_update_time(history_store):
    history_store.upsert(entry("a", at=T0 + timedelta(hours=2)))
    history_store.upsert(entry("b", at=T0))
    history_store.upsert(entry("c", at=T0 + timedelta(hours=1)))

    assert [e.series_id for e in history_store.list_recent()] == ["a", "c", "b"]
    assert [e.series_id for e in history_store.list_recent(limit=2)] == ["a", "c"]


def test_file_uses_camel_case_keys_and_integer_episodes(history_store):
    history_store.upsert(entry(episode=5))
    raw = json.loads(history_store.path.read_text(encoding="utf-8"))

    assert isinstance(raw, list)
    assert set(raw[0]) == {"seriesId", "title", "translationMode", "lastEpisode", "updatedAt"}
    assert raw[0]["translationMode"] == "sub"
    assert raw[0]["lastEpisode"] == 5
    assert isinstance(raw[0]["lastEpisode"], int)


def test_fractional_episode_is_preserved(history_store):
    history_store.upsert(entry(episode=12.5))
    raw = json.loads(history_store.path.read_text(encoding="utf-8"))
    assert raw[0]["lastEpisode"] == 12.5
    assert history_store.find_entry("naruto", TranslationMode.SUB).episode_label == "12.5"


def test_save_leaves_no_temp_files(history_store):
    history_store.upsert(entry())
    history_store.upsert(entry("bleach"))
    assert [p.name for p in history_store.path.parent.iterdir()] == ["history.json"]


def test_corrupt_file_is_set_aside(history_store, caplog):
    history_store.path.parent.mkdir(parents=True)
    history_store.path.write_text("{not json", encoding="utf-8")

    assert len(history_store.load()) == 0
    broken = history_store.path.with_name("history.json.broken")
    assert broken.read_text(encoding="utf-8") == "{not json"
    assert not history_store.path.exists()
    assert "unreadable" in caplog.text


def test_upsert_after_corruption_starts_fresh(history_store):
    history_store.path.parent.mkdir(parents=True)
    history_store.path.write_text("[{\"seriesId\": 1}", encoding="utf-8")

    history_store.upsert(entry(episode=7))
    assert [e.last_episode for e in history_store.load()] == [7]


def test_strict_load_raises(history_store):
    history_store.path.parent.mkdir(parents=True)
    history_store.path.write_text("\"just a string\"", encoding="utf-8")

    with pytest.raises(CorruptHistory):
        history_store.load(strict=True)
    assert history_store.path.exists()


def test_invalid_entry_counts_as_corrupt(history_store):
    history_store.path.parent.mkdir(parents=True)
    history_store.path.write_text(json.dumps([{"seriesId": "x", "translationMode": "raw"}]), encoding="utf-8")

    with pytest.raises(CorruptHistory):
        history_store.load(strict=True)


def test_legacy_layout_is_migrated(history_store):
    history_store.path.parent.mkdir(parents=True)
    history_store.path.write_text(json.dumps({"entries": [
        {"show_id": "one-piece", "show_title": "One Piece", "episode": "1071",
         "translation": "sub", "is_manga": False, "watched_at": "2024-05-01T10:00:00Z"},
        {"show_id": "berserk", "show_title": "Berserk", "episode": "12",
         "translation": "sub", "is_manga": True, "watched_at": "2024-05-02T10:00:00Z"},
    ]}), encoding="utf-8")

    entries = history_store.list_recent()
    assert len(entries) == 1
    assert entries[0].series_id == "one-piece"
    assert entries[0].title == "One Piece"
    assert entries[0].last_episode == 1071
    assert entries[0].updated_at.tzinfo is not None


def test_naive_timestamps_are_read_as_utc():
    e = HistoryEntry.model_validate({
        "seriesId": "x", "translationMode": "dub", "lastEpisode": 1,
        "updatedAt": "2026-01-01T00:00:00",
    })
    assert e.updated_at == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_history_file_upsert_moves_entry_to_front():
    history = HistoryFile([entry("a"), entry("b")])
    history.upsert(entry("b", episode=9))
    assert [e.series_id for e in history] == ["b", "a"]
    assert history.find("b", TranslationMode.SUB).last_episode == 9
    assert history.find("b", TranslationMode.DUB) is None


def test_default_path_comes_from_config(monkeypatch, tmp_path):
    import anv.history as history_module

    target = tmp_path / "elsewhere.json"
    monkeypatch.setattr(history_module, "HISTORY_FILE", target)
    assert HistoryStore().path == target


def test_unparsable_legacy_entry_is_dropped_alone(history_store):
    history_store.path.parent.mkdir(parents=True)
    history_store.path.write_text(json.dumps({"entries": [
        {"show_id": "bleach", "show_title": "Bleach", "episode": "OVA",
         "translation": "sub", "is_manga": False, "watched_at": "2024-05-01T10:00:00Z"},
        {"show_id": "naruto", "show_title": "Naruto", "episode": 12,
         "translation": "dub", "is_manga": False, "watched_at": "2024-05-02T10:00:00Z"},
    ]}), encoding="utf-8")

    entries = history_store.load(strict=True).entries
    assert [e.series_id for e in entries] == ["naruto"]
    assert entries[0].translation_mode is TranslationMode.DUB
    assert not history_store.path.with_name("history.json.broken").exists()
