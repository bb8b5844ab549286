#!/usr/bin/env python3
import argparse
import asyncio
import json
import logging
import shutil
import sys
from contextlib import contextmanager
from enum import IntEnum
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.prompt import Prompt

from .catalog import CatalogClient
from .config import (
    __version__, __license__,
    CONFIG_DIR, CONFIG_FILE, PLAYER_ENV_KEY,
    THEMES, DEFAULT_THEME, SPINNERS
)
from .errors import (
    CorruptHistory, NotFoundCondition, PlayerExitedAbnormally, PlayerNotFound, TransportError,
    UserCancellation,
)
from .flow import Reporter, SelectionFlow, media_title, play
from .history import HistoryStore
from .logging_setup import setup_logging
from .machine import Selection, Stage
from .models import TranslationMode
from .picker import FzfPicker, Picker
from .player import PlaybackLauncher, detect_player

CONSOLE = Console()
logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    OK = 0
    NOT_FOUND = 1
    CATALOG_UNREACHABLE = 2
    PLAYER_NOT_FOUND = 3
    HISTORY_UNRECOVERABLE = 4
    MISSING_DEPENDENCY = 5


class Config:

    def __init__(self, path=CONFIG_FILE):
        self.path = path
        self.theme = DEFAULT_THEME
        self.player: Optional[str] = None
        self.load()

    def load(self):
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable config %s: %s", self.path, e)
            return
        self.theme = data.get("theme", DEFAULT_THEME)
        self.player = data.get("player") or None

    def save(self):
        data = {"theme": self.theme}
        if self.player:
            data["player"] = self.player
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2))
        except OSError as e:
            logger.warning("Could not save config %s: %s", self.path, e)

    def get_theme(self) -> Dict:
        return THEMES.get(self.theme, THEMES[DEFAULT_THEME])


class ConsoleReporter(Reporter):

    def __init__(self, cli: "AnvCLI"):
        self.cli = cli

    def info(self, message: str):
        self.cli.log("ℹ️", message)

    def warn(self, message: str):
        self.cli.log("⚠️", message, self.cli.theme["error"])

    @contextmanager
    def status(self, message: str, spinner: str = "dots2"):
        with Progress(
            SpinnerColumn(SPINNERS.get(spinner, spinner)),
            TextColumn("[progress.description]{task.description}"),
            console=self.cli.console,
            transient=True
        ) as progress:
            progress.add_task(f"[{self.cli.theme['primary']}]{message}", total=None)
            yield


class AnvCLI:

    def __init__(
        self,
        config: Optional[Config] = None,
        catalog=None,
        history: Optional[HistoryStore] = None,
        picker: Optional[Picker] = None,
        launcher: Optional[PlaybackLauncher] = None,
        console: Optional[Console] = None,
    ):
        self.config = config or Config()
        self.console = console or CONSOLE
        self.catalog = catalog
        self.history = history or HistoryStore()
        self.picker = picker
        self.launcher = launcher or PlaybackLauncher()

    @property
    def theme(self) -> Dict:
        return self.config.get_theme()

    def check_deps(self) -> bool:
        if self.picker is None and not shutil.which("fzf"):
            self.console.print("[bold red]✗ Missing dependency:[/bold red] fzf")
            self.console.print("[dim]Install with: sudo apt install fzf[/dim]")
            return False
        return True

    def log(self, emoji: str, message: str, style: str = "dim"):
        self.console.print(f"[{style}]{emoji} {escape(message)}[/{style}]")

    def prompt_query(self) -> str:
        theme = self.theme
        self.console.print(f"[{theme['accent']}]╭─── 🔍 Search ───╮[/{theme['accent']}]")
        try:
            query = Prompt.ask(f"[{theme['primary']}]❯[/{theme['primary']}]", console=self.console, default="", show_default=False)
        except EOFError as e:
            raise UserCancellation("search prompt closed") from e
        return query.strip()

    def now_playing(self, sel: Selection, player_command: str):
        theme = self.theme
        content = f"""
[bold white]{escape(media_title(sel))}[/bold white]
[dim]{escape(sel.translation.label)} · {escape(player_command)}[/dim]

[{theme['secondary']}]🔄 Buffering video stream...[/{theme['secondary']}]

[bold {theme['primary']}]Controls:[/bold {theme['primary']}]
• [bold]q[/bold]     Quit player
• [bold]Space[/bold] Pause/Resume
• [bold]f[/bold]     Toggle Fullscreen
"""
        self.console.print(Panel(
            content.strip(),
            title=f"[bold {theme['primary']}]🎬  NOW PLAYING[/bold {theme['primary']}]",
            border_style=theme['primary'],
            padding=(1, 2)
        ))

    def play(self, sel: Selection):
        player_command = detect_player(self.config.player)
        self.now_playing(sel, player_command)
        try:
            play(sel, self.launcher, self.history, player_command)
            self.log("✓", "Playback finished", f"bold {self.theme['primary']}")
        except PlayerExitedAbnormally as e:
            # Progress is still recorded: a non-zero exit does not mean nothing played.
            self.log("⚠️", str(e), self.theme["error"])

    async def session(self, query: List[str], dub: bool = False, history_mode: bool = False,
                      pick_stream: bool = False) -> int:
        translation = TranslationMode.DUB if dub else TranslationMode.SUB
        if len(query) == 1 and query[0].lower() == "history":
            history_mode = True

        if history_mode:
            sel = Selection.from_history(translation)
        else:
            try:
                text = " ".join(query).strip() or self.prompt_query()
            except UserCancellation:
                return ExitCode.OK
            if not text:
                self.log("ℹ️", "No query provided. Use `anv <name>` or `anv --history`.")
                return ExitCode.OK
            sel = Selection.from_search(text, translation)

        if self.catalog is None:
            self.catalog = CatalogClient()
        if self.picker is None:
            self.picker = FzfPicker(self.console, self.theme)

        flow = SelectionFlow(
            self.catalog, self.history, self.picker,
            reporter=ConsoleReporter(self), pick_stream=pick_stream,
        )
        theme = self.theme
        try:
            sel = await flow.run(sel)
            while sel.stage is Stage.RESOLVED:
                self.play(sel)
                sel = await flow.run(flow.after_playback(sel))
        except NotFoundCondition as e:
            self.log("⚠️", str(e), theme["error"])
            return ExitCode.NOT_FOUND
        except TransportError as e:
            self.log("✗", f"Catalog unreachable: {e}", theme["error"])
            return ExitCode.CATALOG_UNREACHABLE
        except PlayerNotFound as e:
            self.log("✗", str(e), theme["error"])
            self.log("💡", f"Set {PLAYER_ENV_KEY}, e.g. {PLAYER_ENV_KEY}=\"mpv --fs\"")
            return ExitCode.PLAYER_NOT_FOUND
        except (CorruptHistory, OSError) as e:
            self.log("✗", f"Could not save watch history: {e}", theme["error"])
            return ExitCode.HISTORY_UNRECOVERABLE

        if sel.stage is Stage.CANCELLED:
            logger.debug("Selection cancelled")
        return ExitCode.OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="anv",
        description="Stream anime from AllAnime via mpv.",
        epilog=f"Set {PLAYER_ENV_KEY} to change the player command.",
    )
    parser.add_argument("query", nargs="*", metavar="QUERY", help="search query")
    parser.add_argument("--dub", action="store_true", help="prefer dubbed episodes")
    parser.add_argument("--history", action="store_true", help="resume from watch history")
    parser.add_argument("--pick-stream", action="store_true", help="choose the stream quality manually")
    parser.add_argument("--theme", choices=sorted(THEMES), help="set and save the color theme")
    parser.add_argument("--serve", action="store_true", help="run the REST API instead")
    parser.add_argument("--host", default="127.0.0.1", help="REST API host (with --serve)")
    parser.add_argument("--port", type=int, default=8000, help="REST API port (with --serve)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--version", action="version", version=f"anv {__version__} ({__license__})")
    return parser


def run(argv: Optional[List[str]] = None, cli: Optional[AnvCLI] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None)
    logger.debug("Config dir: %s", CONFIG_DIR)

    if args.serve:
        from .api import serve
        serve(args.host, args.port)
        return ExitCode.OK

    cli = cli or AnvCLI()
    if args.theme:
        cli.config.theme = args.theme
        cli.config.save()

    if not cli.check_deps():
        return ExitCode.MISSING_DEPENDENCY

    try:
        return asyncio.run(cli.session(
            args.query, dub=args.dub, history_mode=args.history, pick_stream=args.pick_stream,
        ))
    except KeyboardInterrupt:
        cli.console.print("\n[dim]Interrupted by user[/dim]")
        return ExitCode.OK


def main():
    sys.exit(int(run()))


if __name__ == "__main__":
    main()
