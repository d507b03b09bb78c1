"""
Stable, optionally coloured labels for tagging service log lines.
"""
from typing import Dict, Optional

import click

PALETTE = ("cyan", "magenta", "green", "yellow", "blue", "bright_cyan",
           "bright_magenta", "bright_green", "bright_yellow", "bright_blue")


class ServiceLabeler:
    """
    Hands out one label per service name. Colours are assigned round-robin in
    the order services are first seen, so a name keeps its colour for the
    lifetime of the labeler.
    """
    def __init__(self, color: bool = False, width: Optional[int] = None):
        """
        :param color: Whether to wrap labels in ANSI colour codes.
        :param width: Pad labels to this width so log columns line up.
        """
        self.color = color
        self.width = width
        self._colors: Dict[str, str] = {}

    def color_for(self, name: str) -> str:
        if name not in self._colors:
            self._colors[name] = PALETTE[len(self._colors) % len(PALETTE)]
        return self._colors[name]

    def label(self, name: str) -> str:
        """
        Returns the label for a service, e.g. ``worker-1 |``.
        """
        text = name.ljust(self.width) if self.width else name
        text = f"{text} |"
        if not self.color:
            return text
        return click.style(text, fg=self.color_for(name))
