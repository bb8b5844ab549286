import pytest

from anv.errors import PlaybackWarning, PlayerExitedAbnormally, PlayerNotFound
from anv.models import PlaybackSpec
from anv.player import PlaybackLauncher, build_command, detect_player, header_args

from conftest import FakePopen

SPEC = PlaybackSpec(
    url="https://cdn.example/ep5.m3u8",
    headers={"Referer": "https://allmanga.to", "User-Agent": "UA/1.0", "Origin": "https://allanime.day"},
    subtitle_path="https://subs.example/en.vtt",
    media_title="Naruto - Episode 5",
)


def test_build_command_passes_headers_and_title():
    cmd = build_command(SPEC, "mpv --fs")
    assert cmd[:2] == ["mpv", "--fs"]
    assert "--force-media-title=Naruto - Episode 5" in cmd
    assert "--sub-file=https://subs.example/en.vtt" in cmd
    assert "--referrer=https://allmanga.to" in cmd
    assert "--user-agent=UA/1.0" in cmd
    assert "--http-header-fields=Origin: https://allanime.day" in cmd
    assert cmd[-1] == SPEC.url


def test_header_args_without_headers():
    assert header_args({}) == []


def test_detect_player_precedence(monkeypatch):
    assert detect_player() == "mpv"
    assert detect_player("vlc") == "vlc"
    monkeypatch.setenv("ANV_PLAYER", "  celluloid  ")
    assert detect_player("vlc") == "celluloid"
    monkeypatch.setenv("ANV_PLAYER", "   ")
    assert detect_player("vlc") == "vlc"


def test_launch_runs_callback_after_start():
    events = []
    popen = FakePopen(returncode=0)
    result = PlaybackLauncher(popen=popen).launch(SPEC, "mpv", on_started=lambda: events.append("started"))

    assert events == ["started"]
    assert result.ok
    assert result.command == popen.commands[0]


def test_launch_missing_binary():
    events = []
    launcher = PlaybackLauncher(popen=FakePopen(error=FileNotFoundError("nope")))
    with pytest.raises(PlayerNotFound, match="ANV_PLAYER"):
        launcher.launch(SPEC, "nope-player", on_started=lambda: events.append("started"))
    assert events == []


def test_launch_wrapper_reports_missing_binary():
    events = []
    launcher = PlaybackLauncher(popen=FakePopen(returncode=127, outlives_window=False))
    with pytest.raises(PlayerNotFound):
        launcher.launch(SPEC, "flatpak run io.mpv.Mpv", on_started=lambda: events.append("started"))
    assert events == []


def test_launch_unparsable_command():
    with pytest.raises(PlayerNotFound):
        PlaybackLauncher(popen=FakePopen()).launch(SPEC, "mpv 'unterminated")


def test_non_zero_exit_still_records_progress():
    events = []
    launcher = PlaybackLauncher(popen=FakePopen(returncode=2))
    with pytest.raises(PlayerExitedAbnormally) as excinfo:
        launcher.launch(SPEC, "mpv", on_started=lambda: events.append("started"))

    assert isinstance(excinfo.value, PlaybackWarning)
    assert excinfo.value.result.returncode == 2
    assert events == ["started"]


def test_quick_clean_exit_is_success():
    events = []
    launcher = PlaybackLauncher(popen=FakePopen(returncode=0, outlives_window=False))
    assert launcher.launch(SPEC, "mpv", on_started=lambda: events.append("started")).ok
    assert events == ["started"]


def test_history_write_failure_surfaces_after_playback():
    popen = FakePopen(returncode=0)

    def fail():
        raise PermissionError("read-only data dir")

    with pytest.raises(PermissionError):
        PlaybackLauncher(popen=popen).launch(SPEC, "mpv", on_started=fail)
    assert len(popen.commands) == 1


def test_interrupt_during_startup_stops_player():
    events = []
    popen = FakePopen(interrupted=True)
    launcher = PlaybackLauncher(popen=popen)

    with pytest.raises(KeyboardInterrupt):
        launcher.launch(SPEC, "mpv", on_started=lambda: events.append("started"))
    assert popen.processes[0].terminated
    assert events == []
