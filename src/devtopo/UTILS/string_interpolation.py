"""
Utilities for string interpolation using environment variables.
"""
import re
from typing import Dict, List, Optional


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in topology files.
    Supports $VAR, ${VAR}, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR:?message} and ``$$`` as an escaped dollar sign.
    """
    # Group 1: $$ escape
    # Group 2: braced name, 3: modifier, 4: modifier argument
    # Group 5: bare name
    PATTERN = re.compile(
        r"(\$\$)"
        r"|\$\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-+?])([^}]*))?\}"
        r"|\$([A-Za-z_][A-Za-z0-9_]*)"
    )

    def __init__(self, context: Dict[str, str]):
        """
        :param context: The variables available for substitution.
        """
        self.context = context
        self.missing: List[str] = []

    def interpolate(self, template: str) -> str:
        """
        Interpolates variables in the template string. Unset variables without
        a modifier resolve to an empty string and are recorded in :attr:`missing`.

        :param template: The string containing ``${VAR}`` placeholders.
        :return: The interpolated string.
        :raises KeyError: If a ``${VAR:?message}`` variable is unset or empty.
        """
        return self.PATTERN.sub(self._replace, template)

    def _replace(self, match: "re.Match") -> str:
        if match.group(1):
            return "$"
        name = match.group(2) or match.group(5)
        modifier: Optional[str] = match.group(3)
        argument = match.group(4) or ""
        value = self.context.get(name)

        if modifier == ":-":
            return value if value else argument
        if modifier == "-":
            return argument if value is None else value
        if modifier in (":+", "+"):
            present = bool(value) if modifier == ":+" else value is not None
            return argument if present else ""
        if modifier in (":?", "?"):
            absent = not value if modifier == ":?" else value is None
            if absent:
                raise KeyError(argument or f"Variable {name} is required")
            return value
        if value is None:
            if name not in self.missing:
                self.missing.append(name)
            return ""
        return value
