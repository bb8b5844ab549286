import subprocess
from typing import Dict, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape

from .config import DEFAULT_THEME, THEMES


class Picker:
    """Given labeled options, return the chosen index or None for back/cancel."""

    def present(
        self,
        options: Sequence[str],
        prompt: str = "❯ ",
        default_index: int = 0,
        header: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Optional[int]:
        raise NotImplementedError


class FzfPicker(Picker):

    def __init__(self, console: Optional[Console] = None, theme: Optional[Dict] = None):
        self.console = console or Console()
        self.theme = theme or THEMES[DEFAULT_THEME]

    def _show_intro(self, title: Optional[str]):
        self.console.clear()
        if title:
            self.console.print(f"[bold {self.theme['primary']}]{escape(title)}[/bold {self.theme['primary']}]")
            self.console.print("")

    def build_args(self, prompt: str, default_index: int, header: Optional[str]) -> List[str]:
        theme = self.theme
        args = [
            'fzf', '--ansi', '--layout=reverse', '--height=80%',
            f'--prompt={prompt}',
            '--delimiter=\t', '--with-nth=2',
            f'--color=fg:-1,bg:-1,hl:{theme["accent"]},fg+:-1,bg+:-1,hl+:{theme["primary"]}',
            f'--color=info:{theme["secondary"]},prompt:{theme["primary"]},pointer:{theme["primary"]}',
            f'--color=marker:{theme["accent"]},spinner:{theme["primary"]},header:{theme["secondary"]}'
        ]
        if header:
            args.append(f'--header={header}')
        if default_index > 0:
            # pos() is 1-based
            args.append(f'--bind=load:pos({default_index + 1})')
        return args

    def present(self, options, prompt="❯ ", default_index=0, header=None, title=None):
        if not options:
            return None

        numbered = [f"{i}\t{options[i]}" for i in range(len(options))]
        self._show_intro(title)

        process = subprocess.run(
            self.build_args(prompt, default_index, header),
            input="\n".join(numbered),
            capture_output=True,
            text=True,
        )
        self.console.clear()

        # 1 = no match, 130 = Esc / Ctrl-C
        if process.returncode != 0:
            return None

        selected = process.stdout.strip()
        if not selected:
            return None
        try:
            idx = int(selected.split('\t', 1)[0])
        except ValueError:
            return None
        return idx if 0 <= idx < len(options) else None
