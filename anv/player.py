import logging
import os
import shlex
import subprocess
import time
from typing import Callable, List, Optional

from .config import DEFAULT_PLAYER, PLAYER_ENV_KEY, PLAYER_STARTUP_WINDOW
from .errors import PlayerExitedAbnormally, PlayerNotFound
from .models import LaunchResult, PlaybackSpec

logger = logging.getLogger(__name__)

# Shell wrappers (flatpak, env, sh -c) report a missing binary this way.
NOT_EXECUTABLE = 126
NOT_FOUND = 127


def detect_player(configured: Optional[str] = None) -> str:
    env = os.environ.get(PLAYER_ENV_KEY, "").strip()
    if env:
        return env
    if configured and configured.strip():
        return configured.strip()
    return DEFAULT_PLAYER


def header_args(headers) -> List[str]:
    args = []
    for key, value in headers.items():
        lower = key.lower()
        if lower == "user-agent":
            args.append(f"--user-agent={value}")
        elif lower == "referer":
            args.append(f"--referrer={value}")
            args.append(f"--http-header-fields=Referer: {value}")
        else:
            args.append(f"--http-header-fields={key}: {value}")
    return args


def build_command(spec: PlaybackSpec, player_command: str) -> List[str]:
    cmd = shlex.split(player_command)
    if spec.media_title:
        cmd.append(f"--force-media-title={spec.media_title}")
    if spec.subtitle_path:
        cmd.append(f"--sub-file={spec.subtitle_path}")
    cmd.extend(header_args(spec.headers))
    cmd.append(spec.url)
    return cmd


class PlaybackLauncher:

    def __init__(
        self,
        startup_window: float = PLAYER_STARTUP_WINDOW,
        popen=subprocess.Popen,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.startup_window = startup_window
        self.popen = popen
        self.clock = clock

    def _spawn(self, cmd: List[str]):
        try:
            return self.popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except (FileNotFoundError, PermissionError) as e:
            raise PlayerNotFound(cmd[0], PLAYER_ENV_KEY) from e
        except OSError as e:
            logger.debug("Player spawn failed: %s", e)
            raise PlayerNotFound(cmd[0], PLAYER_ENV_KEY) from e

    def launch(
        self,
        spec: PlaybackSpec,
        player_command: str,
        on_started: Optional[Callable[[], None]] = None,
    ) -> LaunchResult:
        """Run the player to completion.

        ``on_started`` runs once the process is known to be running, and
        never when it could not be started. Raises ``PlayerNotFound`` or
        ``PlayerExitedAbnormally``.
        """
        try:
            cmd = build_command(spec, player_command)
        except ValueError as e:
            raise PlayerNotFound(player_command, PLAYER_ENV_KEY) from e
        if len(cmd) < 2:
            raise PlayerNotFound(player_command, PLAYER_ENV_KEY)

        logger.debug("Launching: %s", shlex.join(cmd))
        started_at = self.clock()
        proc = self._spawn(cmd)

        record_error = None
        try:
            try:
                returncode = proc.wait(timeout=self.startup_window)
            except subprocess.TimeoutExpired:
                returncode = None

            if returncode in (NOT_EXECUTABLE, NOT_FOUND):
                raise PlayerNotFound(cmd[0], PLAYER_ENV_KEY)

            if on_started is not None:
                try:
                    on_started()
                except OSError as e:
                    # Let playback continue; the caller hears about it afterwards.
                    record_error = e

            if returncode is None:
                returncode = proc.wait()
        except KeyboardInterrupt:
            proc.terminate()
            raise

        result = LaunchResult(command=cmd, returncode=returncode, elapsed=self.clock() - started_at)
        if record_error is not None:
            raise record_error
        if returncode != 0:
            raise PlayerExitedAbnormally(result)
        return result
