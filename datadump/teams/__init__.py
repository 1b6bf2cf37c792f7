"""
Team member views across projects.
"""

from datadump.teams.team_codes import (
    DEFAULT_PATTERNS,
    TeamCodePattern,
    TeamCodeResolver,
    resolve_team_name,
)
from datadump.teams.aggregator import (
    PagedResult,
    TeamAggregator,
    TeamMemberQuery,
    iter_csv,
    paginate,
)

__all__ = [
    "DEFAULT_PATTERNS",
    "TeamCodePattern",
    "TeamCodeResolver",
    "resolve_team_name",
    "PagedResult",
    "TeamAggregator",
    "TeamMemberQuery",
    "iter_csv",
    "paginate",
]
