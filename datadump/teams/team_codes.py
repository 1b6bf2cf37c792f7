"""
Team code resolution for merged team-member rows.

Explicit columns win; otherwise the code is guessed from the email's local
part with an ordered list of patterns. The guess is best effort.
"""

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence


@dataclass(frozen=True)
class TeamCodePattern:
    """One heuristic. Returns capture group 1 when the pattern has one, else the whole match."""

    name: str
    regex: re.Pattern

    def extract(self, local_part: str) -> Optional[str]:
        match = self.regex.search(local_part)
        if not match:
            return None
        if self.regex.groups and match.group(1):
            return match.group(1)
        return match.group(0)


DEFAULT_PATTERNS: tuple[TeamCodePattern, ...] = (
    TeamCodePattern("team_prefix", re.compile(r"team[_-]?([a-zA-Z0-9]+)", re.IGNORECASE)),
    TeamCodePattern("team_suffix", re.compile(r"([a-zA-Z0-9]+)[_-]?team", re.IGNORECASE)),
    TeamCodePattern("t_number", re.compile(r"^t([0-9]+)$", re.IGNORECASE)),
    TeamCodePattern("short_code", re.compile(r"^([a-zA-Z]{2,6}[0-9]{1,4})$")),
    TeamCodePattern("alnum", re.compile(r"^([a-zA-Z0-9]{3,8})$")),
)


def _present(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class TeamCodeResolver:
    """Derives ``team_code`` for a row; patterns are tried in order, first match wins."""

    def __init__(self, patterns: Sequence[TeamCodePattern] = DEFAULT_PATTERNS):
        self._patterns = tuple(patterns)

    def from_email(self, email: Any) -> Optional[str]:
        email = _present(email)
        if email is None:
            return None
        local_part = email.split("@", 1)[0]
        for pattern in self._patterns:
            code = pattern.extract(local_part)
            if code:
                return code
        return local_part or None

    def resolve(self, row: Mapping[str, Any]) -> Optional[str]:
        """``join_code``, then ``team_code``, then the email heuristic."""
        return (
            _present(row.get("join_code"))
            or _present(row.get("team_code"))
            or self.from_email(row.get("email"))
        )


def resolve_team_name(row: Mapping[str, Any], team_code: Optional[str]) -> Optional[str]:
    """``team_name``, then ``team``, then the derived team code."""
    return _present(row.get("team_name")) or _present(row.get("team")) or team_code
