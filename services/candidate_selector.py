"""
Candidate selection for campaign assignment.

Selection is a pure query: it reads unassigned contacts, drops the ones that
are not eligible (qualification, campaign, email, blocklist) and applies
the quotas. Nothing is persisted.

Quota policy:
- within a platform, oldest contact first (contact id breaks ties)
- each platform is capped at max_per_platform
- the overall total is capped at max_total by taking candidates round-robin
  across platforms in platform-id order, so one large platform cannot fill
  the whole quota
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional

from domain.candidate import CandidateContact, PlatformGroup
from repositories import blocklist_repository, candidate_repository
from services.blocklist_filter import BlocklistFilter
from services.errors import ConfigurationError, SelectionError

logger = logging.getLogger(__name__)

PREVIEW_SAMPLE_SIZE = 20


def balanced_selection(
    candidates: Iterable[CandidateContact],
    max_total: int,
    max_per_platform: int,
    taken_per_platform: Optional[Mapping[str, int]] = None,
) -> List[CandidateContact]:
    """
    Apply the per-platform and global quotas.

    Args:
        candidates: Eligible candidates, in any order
        max_total: Global cap on the returned candidates
        max_per_platform: Cap per platform
        taken_per_platform: Quota already consumed per platform (resumed batches)

    Returns:
        Candidates in round-robin order (one per platform per round)
    """

    taken = taken_per_platform or {}
    by_platform: Dict[str, List[CandidateContact]] = {}
    for candidate in sorted(candidates, key=lambda c: c.sort_key):
        by_platform.setdefault(candidate.platform_id, []).append(candidate)

    queues: List[List[CandidateContact]] = []
    for platform_id in sorted(by_platform):
        room = max(0, max_per_platform - taken.get(platform_id, 0))
        queues.append(by_platform[platform_id][:room])

    picked: List[CandidateContact] = []
    depth = 0
    while len(picked) < max_total and any(depth < len(queue) for queue in queues):
        for queue in queues:
            if len(picked) >= max_total:
                break
            if depth < len(queue):
                picked.append(queue[depth])
        depth += 1
    return picked


def group_by_platform(candidates: Iterable[CandidateContact]) -> List[PlatformGroup]:
    """Group candidates per platform, keeping their order, platforms sorted by id."""

    groups: Dict[str, PlatformGroup] = {}
    for candidate in candidates:
        group = groups.get(candidate.platform_id)
        if group is None:
            group = PlatformGroup(candidate.platform_id, candidate.platform_name, [])
            groups[candidate.platform_id] = group
        group.candidates.append(candidate)
    return [groups[platform_id] for platform_id in sorted(groups)]


@dataclass(frozen=True, slots=True)
class SelectionPreview:
    groups: List[PlatformGroup]
    sample: List[CandidateContact]

    @property
    def total_candidates(self) -> int:
        return sum(group.candidate_count for group in self.groups)


class CandidateSelector:
    """
    Reads candidates and applies eligibility rules and quotas.

    `candidates` and `blocklist` default to the Supabase repositories; tests
    pass in-memory sources with the same functions.
    """

    def __init__(self, candidates: Any = candidate_repository, blocklist: Any = blocklist_repository) -> None:
        self._candidates = candidates
        self._blocklist = blocklist

    def _eligible(
        self,
        platform_id: Optional[str],
        exclude_ids: Collection[str],
    ) -> List[CandidateContact]:
        try:
            # Every platform is read so a shared contact lands on the same platform in
            # global and platform-scoped selection
            rows = self._candidates.list_unassigned_candidates()
            blocklist = BlocklistFilter.load(self._blocklist)
        except Exception as e:
            logger.exception("Candidate selection failed")
            raise SelectionError(f"Failed to select candidates: {e}") from e

        excluded = set(exclude_ids)
        seen: set[str] = set()
        eligible: List[CandidateContact] = []
        blocked = 0

        # A contact linked to several platforms is assigned once, through the first platform
        for candidate in sorted(rows, key=lambda c: (c.sort_key, c.platform_id)):
            if candidate.contact_id in excluded or candidate.contact_id in seen:
                continue
            if candidate.ineligibility_reason() is not None:
                continue
            if blocklist.is_candidate_blocked(candidate):
                blocked += 1
                continue
            seen.add(candidate.contact_id)
            if platform_id is None or candidate.platform_id == platform_id:
                eligible.append(candidate)

        logger.debug(
            "Candidates read=%d eligible=%d blocked=%d excluded=%d",
            len(rows),
            len(eligible),
            blocked,
            len(excluded),
        )
        return eligible

    def select(
        self,
        max_total: int,
        max_per_platform: int,
        platform_id: Optional[str] = None,
        exclude_ids: Collection[str] = (),
        taken_per_platform: Optional[Mapping[str, int]] = None,
    ) -> List[CandidateContact]:
        """
        Candidates in processing order (round-robin across platforms).

        Raises:
            ConfigurationError: a quota below 1
            SelectionError: candidates could not be read
        """

        if max_total < 1 or max_per_platform < 1:
            raise ConfigurationError("max_total and max_per_platform must be at least 1")

        eligible = self._eligible(platform_id, exclude_ids)
        return balanced_selection(eligible, max_total, max_per_platform, taken_per_platform)

    def get_grouped_candidates_by_platform(
        self,
        max_total: int,
        max_per_platform: int,
        platform_id: Optional[str] = None,
        exclude_ids: Collection[str] = (),
        taken_per_platform: Optional[Mapping[str, int]] = None,
    ) -> List[PlatformGroup]:
        """Selected candidates grouped per platform; empty when nothing is eligible."""

        selected = self.select(max_total, max_per_platform, platform_id, exclude_ids, taken_per_platform)
        groups = group_by_platform(selected)
        logger.info(
            "Selected %d candidates over %d platforms (max_total=%d, max_per_platform=%d)",
            len(selected),
            len(groups),
            max_total,
            max_per_platform,
        )
        return groups

    def preview(self, max_total: int, max_per_platform: int) -> SelectionPreview:
        groups = self.get_grouped_candidates_by_platform(max_total, max_per_platform)
        ordered = sorted(
            (candidate for group in groups for candidate in group.candidates),
            key=lambda c: c.sort_key,
        )
        return SelectionPreview(groups=groups, sample=ordered[:PREVIEW_SAMPLE_SIZE])

    def recheck(self, candidate: CandidateContact) -> Optional[str]:
        """
        Re-read one candidate right before it is processed.

        Returns:
            Why the candidate no longer qualifies, or None
        """

        current = self._candidates.get_candidate(candidate.contact_id, candidate.platform_id)
        if current is None:
            return "no longer a candidate"
        reason = current.ineligibility_reason()
        if reason is not None:
            return reason
        if BlocklistFilter.load(self._blocklist).is_candidate_blocked(current):
            return "blocked"
        return None


__all__ = [
    "PREVIEW_SAMPLE_SIZE",
    "balanced_selection",
    "group_by_platform",
    "SelectionPreview",
    "CandidateSelector",
]
