"""
Operator interaction on the controlling terminal.
"""

import logging
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class ConsolePrompter:
    """Line-oriented prompts on stdin/stdout."""

    def __init__(self, input_func=input, output_func=print):
        self._input = input_func
        self._output = output_func

    def notify(self, message: str) -> None:
        """Show a message to the operator."""
        self._output(message)

    def read_line(self, prompt: str = "") -> Optional[str]:
        """Read one line, or None once stdin is closed."""
        try:
            return self._input(prompt).strip()
        except EOFError:
            return None

    def ask(self, prompt: str, default: str = "") -> str:
        """Ask for free text; empty input or EOF yields the default."""
        answer = self.read_line(f"{prompt}: ")
        return answer if answer else default

    def ask_yes_no(self, prompt: str, default: bool = False) -> bool:
        """Ask until the operator answers y or n."""
        default_label = "y" if default else "n"
        while True:
            answer = self.read_line(f"{prompt} (y/n, default {default_label}): ")
            if not answer:
                return default
            if answer[0] in "Yy":
                return True
            if answer[0] in "Nn":
                return False
            self.notify("Please answer y or n.")

    def choose_index(self, prompt: str, options: Sequence[str]) -> int:
        """
        Let the operator pick one of several options by index.

        Empty or invalid input selects index 0.
        """
        for i, option in enumerate(options):
            self.notify(f"  {i}: {option}")
        answer = self.read_line(f"{prompt} (0-{len(options) - 1}, default 0): ")
        try:
            index = int(answer)
        except (TypeError, ValueError):
            return 0
        if 0 <= index < len(options):
            return index
        logger.warning(f"Index {index} out of range, using 0")
        return 0
