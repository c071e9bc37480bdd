"""
UI output management with color-coded terminal output.

Also hosts ConsoleStderrHandler, which renders the daemon's log text and
activity events for the CLI.
"""

import sys
from typing import Optional, TextIO

from nixlink.daemon.stderr import Activity, ActivityResult, ResultType, StderrHandler

TEXT_COLOR_MAPPING = {
    "blue": "36;1",
    "yellow": "33;1",
    "green": "32;1",
    "red": "31;1",
    "cyan": "96;1",
    "gray": "90",
}


def get_colored_text(text: str, color: str) -> str:
    """
    Get colored text.

    Args:
        text: The text to color
        color: The color to use

    Returns:
        Colored text string

    Raises:
        ValueError: If the specified color is not supported
    """
    if color not in TEXT_COLOR_MAPPING:
        raise ValueError(
            f"Unsupported color: {color}. Available colors: {', '.join(TEXT_COLOR_MAPPING.keys())}"
        )

    color_str = TEXT_COLOR_MAPPING[color]
    return f"\u001b[{color_str}m{text}\u001b[0m"


class UIManager:
    """Manages colored terminal output for nixlink."""

    def __init__(self, file: Optional[TextIO] = None, color: Optional[bool] = None):
        """
        Initialize UI manager.

        Args:
            file: Output stream (defaults to sys.stderr at print time)
            color: Force colors on/off (default: only when the stream is a TTY)
        """
        self.file = file
        self.color = color

    def success(self, message: str) -> None:
        """Print success message in green."""
        self._print_colored(message, "green")

    def error(self, message: str) -> None:
        """Print error message in red."""
        self._print_colored(message, "red")

    def warning(self, message: str) -> None:
        """Print warning message in yellow."""
        self._print_colored(message, "yellow")

    def info(self, message: str) -> None:
        """Print info message in blue."""
        self._print_colored(message, "blue")

    def dim(self, text: str) -> None:
        """Print dimmed text in gray."""
        self._print_colored(text, "gray")

    def _stream(self) -> TextIO:
        return self.file if self.file is not None else sys.stderr

    def _use_color(self, stream: TextIO) -> bool:
        if self.color is not None:
            return self.color
        isatty = getattr(stream, "isatty", None)
        return bool(isatty and isatty())

    def _print_colored(self, text: str, color: str, end: str = "\n") -> None:
        """
        Print text with color highlighting.

        Args:
            text: The text to print
            color: Color to use
            end: String to append at the end
        """
        stream = self._stream()
        if self._use_color(stream):
            try:
                text = get_colored_text(text, color)
            except ValueError:
                # Fall back to plain text if color is invalid
                pass

        print(text, end=end, file=stream)
        stream.flush()

    def print_text(self, text: str, color: Optional[str] = None, end: str = "") -> None:
        """Print text with optional highlighting, verbatim otherwise."""
        if color:
            self._print_colored(text, color, end)
        else:
            stream = self._stream()
            print(text, end=end, file=stream)
            stream.flush()


class ConsoleStderrHandler(StderrHandler):
    """
    StderrHandler that prints daemon output through a UIManager.

    Log text is always printed verbatim. Activity starts and build log
    lines are shown (dimmed, indented by nesting depth) only when
    `show_activities` is set.
    """

    def __init__(self, ui: Optional[UIManager] = None, show_activities: bool = False):
        super().__init__()
        self.ui = ui or UIManager()
        self.show_activities = show_activities

    def _depth(self, activity_id: int) -> int:
        depth = 0
        seen = {activity_id}
        current = self.activities.get(activity_id)
        # Parent ids come from the daemon and may form a cycle.
        while current is not None and current.parent in self.activities:
            if current.parent in seen:
                break
            seen.add(current.parent)
            depth += 1
            current = self.activities[current.parent]
        return depth

    def write(self, text: str) -> None:
        self.ui.print_text(text)

    def start_activity(self, activity: Activity) -> None:
        super().start_activity(activity)
        if self.show_activities and activity.description:
            indent = "  " * self._depth(activity.id)
            self.ui.dim(f"{indent}{activity.description}")

    def result(self, result: ActivityResult) -> None:
        super().result(result)
        if not self.show_activities:
            return
        if result.type in (ResultType.BUILD_LOG_LINE, ResultType.POST_BUILD_LOG_LINE):
            if result.fields and isinstance(result.fields[0], str):
                indent = "  " * (self._depth(result.activity_id) + 1)
                self.ui.dim(f"{indent}{result.fields[0]}")
