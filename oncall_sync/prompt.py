from __future__ import annotations

import logging
from typing import Callable, List, Protocol


class OverridePrompt(Protocol):
    def confirm(self, description: str) -> bool:
        ...


class ConsolePrompt:
    """Asks on the terminal; anything but y/yes keeps the calendar as it is."""

    def __init__(self, ask: Callable[[str], str] = input) -> None:
        self._ask = ask

    def confirm(self, description: str) -> bool:
        try:
            answer = self._ask(f"{description}\nApply this override anyway? [y/N] ")
        except EOFError:
            logging.warning("No operator input available, skipping override")
            return False
        return answer.strip().lower() in ("y", "yes")


class StaticPrompt:
    def __init__(self, answer: bool) -> None:
        self.answer = answer
        self.asked: List[str] = []

    def confirm(self, description: str) -> bool:
        self.asked.append(description)
        logging.info("%s -> %s", description, "accepted" if self.answer else "skipped")
        return self.answer
