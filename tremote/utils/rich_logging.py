"""Rich logging integration for tremote.

Provides Rich-based logging handlers and formatters.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

_MARKUP_PATTERN = re.compile(r"\[/?[^\]]+\]")


class CorrelationRichHandler(RichHandler):
    """RichHandler with correlation ID support and method name coloring.

    Method names are colored pink (#ff69b4) and RPC method names such as
    ``session-get`` or ``torrent-start`` are colored bright cyan.
    """

    RPC_METHOD_PATTERN = re.compile(r"\b(?:session|torrent)-[a-z-]+\b|\bfree-space\b")

    def __init__(
        self,
        *args: Any,
        console: Console | None = None,
        show_colors: bool = True,
        **kwargs: Any,
    ) -> None:
        """Initialize RichHandler with markup enabled.

        Args:
            *args: Positional arguments for RichHandler
            console: Optional Rich Console instance
            show_colors: Whether to colorize method names
            **kwargs: Keyword arguments for RichHandler

        """
        if console is None:
            console = Console(file=sys.stderr, markup=True)

        self.show_colors = show_colors
        kwargs.setdefault("markup", True)
        super().__init__(*args, console=console, **kwargs)

    def _colorize(self, message: str) -> str:
        """Escape user text and highlight RPC method names."""
        message = escape(message)
        if not self.show_colors:
            return message
        return self.RPC_METHOD_PATTERN.sub(
            lambda m: f"[bright_cyan]{m.group(0)}[/bright_cyan]", message
        )

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record with correlation ID and colored method name."""
        try:
            if not hasattr(record, "correlation_id"):
                from tremote.utils.logging_config import correlation_id

                record.correlation_id = correlation_id.get() or "no-correlation-id"

            colored_msg = self._colorize(record.getMessage())
            func_name = getattr(record, "funcName", None)
            if self.show_colors and func_name and func_name != "<module>":
                colored_msg = f"[#ff69b4]{func_name}[/#ff69b4] {colored_msg}"

            record.msg = colored_msg
            record.args = ()

            super().emit(record)
        except Exception:
            self.handleError(record)

    def handleError(self, record: logging.LogRecord) -> None:
        """Handle errors during logging without re-entering logging."""
        try:
            sys.stderr.write(
                f"Logging error (suppressed): {record.levelname} {record.name}\n"
            )
            sys.stderr.flush()
        except Exception:  # noqa: S110
            pass


def strip_rich_markup(text: str) -> str:
    """Strip Rich markup from text for file logging.

    Args:
        text: Text with Rich markup

    Returns:
        Text without Rich markup

    """
    return _MARKUP_PATTERN.sub("", text)


class FileFormatter(logging.Formatter):
    """Formatter for file output that strips Rich markup."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record, stripping Rich markup for file output."""
        return strip_rich_markup(super().format(record))


def create_rich_handler(
    console: Console | None = None,
    level: int = logging.INFO,
    show_path: bool = False,
    rich_tracebacks: bool = True,
    show_colors: bool = True,
) -> logging.Handler:
    """Create a RichHandler with correlation ID support.

    Args:
        console: Optional Rich Console instance (stderr by default)
        level: Log level
        show_path: Whether to show file paths in log output
        rich_tracebacks: Whether to use rich tracebacks
        show_colors: Whether to colorize method names

    Returns:
        Configured RichHandler instance

    """
    if console is None:
        console = Console(
            file=sys.stderr,
            force_interactive=False,
            legacy_windows=False,
            markup=True,
        )

    return CorrelationRichHandler(
        console=console,
        level=level,
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
        show_colors=show_colors,
    )
