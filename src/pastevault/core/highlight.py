"""
Syntax highlighting of paste content with Pygments.

Themes and output formats form small closed sets, modelled as enums and
dispatched on explicitly.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog
from pygments import highlight
from pygments.formatters import HtmlFormatter, Terminal256Formatter
from pygments.lexer import Lexer
from pygments.lexers import TextLexer, get_lexer_for_filename
from pygments.util import ClassNotFound

logger = structlog.get_logger(__name__)

# Lines this long make lexing slow for little benefit
MAX_HIGHLIGHT_LINE_LENGTH = 2048


class Theme(str, Enum):
    """Supported color themes, valued by their Pygments style name."""

    DEFAULT = "default"
    MONOKAI = "monokai"
    SOLARIZED_DARK = "solarized-dark"
    SOLARIZED_LIGHT = "solarized-light"
    GRUVBOX_DARK = "gruvbox-dark"
    ONE_DARK = "one-dark"
    NORD = "nord"
    DRACULA = "dracula"


class RenderFormat(str, Enum):
    """Output formats."""

    HTML = "html"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class RenderOptions:
    theme: Theme = Theme.DEFAULT
    format: RenderFormat = RenderFormat.HTML


class Highlighter:
    """Turns paste text into highlighted HTML or ANSI output."""

    def __init__(self, max_line_length: int = MAX_HIGHLIGHT_LINE_LENGTH) -> None:
        self.max_line_length = max_line_length

    def select_lexer(self, text: str, extension: Optional[str]) -> Lexer:
        if any(len(line) > self.max_line_length for line in text.splitlines()):
            return TextLexer()

        if not extension:
            return TextLexer()

        try:
            return get_lexer_for_filename(f"paste.{extension}")
        except ClassNotFound:
            return TextLexer()

    def render(self, text: str, extension: Optional[str], options: RenderOptions) -> str:
        lexer = self.select_lexer(text, extension)
        theme = options.theme.value

        if options.format is RenderFormat.HTML:
            formatter = HtmlFormatter(
                style=theme,
                linenos="table",
                lineanchors="L",
                anchorlinenos=True,
                noclasses=True,
            )
        elif options.format is RenderFormat.TERMINAL:
            formatter = Terminal256Formatter(style=theme)
        else:
            raise ValueError(f"Unsupported render format: {options.format}")

        return highlight(text, lexer, formatter)
