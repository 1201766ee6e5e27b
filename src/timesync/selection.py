"""
Best-sample selection for one polling round.

Candidates are ordered by stratum reliability rank, then by absolute offset.
Ties keep the configured peer order. No clock filter or clique algorithm is
applied.
"""

import logging
from typing import Iterable, List, Optional

from .logging import debug_log_call
from .sample import PeerQueryResult

logger = logging.getLogger(__name__)


def _selection_key(result: PeerQueryResult):
    return result.reliability, abs(result.sample.offset)


def rank_results(results: Iterable[PeerQueryResult]) -> List[PeerQueryResult]:
    """Valid results, most trustworthy first. sorted() is stable, so ties keep input order."""
    return sorted((r for r in results if r.is_valid), key=_selection_key)


@debug_log_call
def select_best(results: Iterable[PeerQueryResult]) -> Optional[PeerQueryResult]:
    """The single best result of a round, or None when no peer produced a valid sample."""
    ranked = rank_results(results)
    if not ranked:
        return None

    for position, result in enumerate(ranked):
        logger.debug(f"  #{position} {result}")

    return ranked[0]
