from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Literal

from registry_pipeline.core.domains import normalize_domain
from registry_pipeline.schemas.records import BusinessRecord
from registry_pipeline.services.interfaces import AuditLog, RecordStore
from registry_pipeline.services.repository import RepositoryError

logger = logging.getLogger(__name__)

LEGAL_SUFFIXES = ("asa", "as", "ab", "ag", "inc", "ltd", "gmbh", "plc", "corp", "group")
PRIORITY_COUNTRIES = ("NO", "DE", "US", "GB")
NAME_SIMILARITY_THRESHOLD = 0.66

_SUFFIX_RE = re.compile(r"\s+(?:" + "|".join(LEGAL_SUFFIXES) + r")\.?$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

MatchReason = Literal["bare_name", "token_similarity", "dot_prefix"]


@dataclass(slots=True)
class DedupeSnapshot:
    record: BusinessRecord
    domain: str
    bare_name: str
    tokens: frozenset[str]
    has_dot: bool
    dot_prefix: str | None


@dataclass(slots=True)
class DuplicateGroup:
    domain: str
    winner: BusinessRecord
    losers: list[BusinessRecord]
    reasons: list[MatchReason] = field(default_factory=list)

    @property
    def members(self) -> list[BusinessRecord]:
        return [self.winner, *self.losers]


@dataclass(slots=True)
class ResolutionSummary:
    groups: int = 0
    deleted: int = 0
    failed_groups: int = 0
    deleted_ids: list[str] = field(default_factory=list)


class _UnionFind:
    def __init__(self, size: int) -> None:
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, x: int) -> int:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, x: int, y: int) -> None:
        px, py = self.find(x), self.find(y)
        if px == py:
            return
        if self.rank[px] < self.rank[py]:
            px, py = py, px
        self.parent[py] = px
        if self.rank[px] == self.rank[py]:
            self.rank[px] += 1


def normalize_name(name: object) -> str | None:
    """Bare name: lowercased, one trailing legal suffix removed, alphanumerics only."""
    if not isinstance(name, str):
        return None
    lowered = name.strip().lower()
    stripped = _SUFFIX_RE.sub("", lowered)
    bare = _NON_ALNUM_RE.sub("", stripped)
    return bare or None


def name_tokens(name: object) -> frozenset[str]:
    """Whitespace tokens of the lowercased name, suffix kept, punctuation dropped per token."""
    if not isinstance(name, str):
        return frozenset()
    tokens = (_NON_ALNUM_RE.sub("", token) for token in name.lower().split())
    return frozenset(token for token in tokens if token)


def build_snapshot(record: BusinessRecord) -> DedupeSnapshot | None:
    domain = normalize_domain(record.domain)
    bare_name = normalize_name(record.legal_name)
    if domain is None or bare_name is None:
        return None
    return DedupeSnapshot(
        record=record,
        domain=domain,
        bare_name=bare_name,
        tokens=name_tokens(record.legal_name),
        has_dot="." in record.legal_name,
        dot_prefix=_dot_prefix(record.legal_name),
    )


def match_reason(left: DedupeSnapshot, right: DedupeSnapshot) -> MatchReason | None:
    if left.domain != right.domain:
        return None
    if left.bare_name == right.bare_name:
        return "bare_name"
    if _jaccard(left.tokens, right.tokens) > NAME_SIMILARITY_THRESHOLD:
        return "token_similarity"
    if (left.has_dot or right.has_dot) and left.dot_prefix and left.dot_prefix == right.dot_prefix:
        return "dot_prefix"
    return None


def find_duplicate_groups(records: Sequence[BusinessRecord]) -> list[DuplicateGroup]:
    """Partition ``records`` into groups believed to be the same company.

    Only records sharing a normalized domain are ever compared. Groups are
    connected components of the match relation, so A~B and B~C puts all three
    together even when A and C do not match directly. Groups come back in the
    order their earliest member appears in ``records``.
    """
    snapshots: list[DedupeSnapshot] = []
    for record in records:
        snapshot = build_snapshot(record)
        if snapshot is None:
            logger.debug("dedupe skip id=%s reason=unnormalizable", record.id)
            continue
        snapshots.append(snapshot)

    by_domain: dict[str, list[int]] = {}
    for index, snapshot in enumerate(snapshots):
        by_domain.setdefault(snapshot.domain, []).append(index)

    components = _UnionFind(len(snapshots))
    reasons: dict[int, list[MatchReason]] = {}
    for indexes in by_domain.values():
        for position, left in enumerate(indexes):
            for right in indexes[position + 1 :]:
                reason = match_reason(snapshots[left], snapshots[right])
                if reason is None:
                    continue
                components.union(left, right)
                reasons.setdefault(left, []).append(reason)

    members_by_root: dict[int, list[int]] = {}
    for index in range(len(snapshots)):
        members_by_root.setdefault(components.find(index), []).append(index)

    groups: list[DuplicateGroup] = []
    for indexes in sorted(members_by_root.values(), key=lambda items: items[0]):
        if len(indexes) < 2:
            continue
        winner, losers = select_winner([snapshots[index].record for index in indexes])
        group_reasons: list[MatchReason] = []
        for index in indexes:
            for reason in reasons.get(index, []):
                if reason not in group_reasons:
                    group_reasons.append(reason)
        groups.append(
            DuplicateGroup(
                domain=snapshots[indexes[0]].domain,
                winner=winner,
                losers=losers,
                reasons=group_reasons,
            )
        )
    return groups


def select_winner(members: Sequence[BusinessRecord]) -> tuple[BusinessRecord, list[BusinessRecord]]:
    """Order by priority market, then trust score descending, then age; first one survives."""
    if not members:
        raise ValueError("cannot select a winner from an empty group")
    ranked = sorted(
        members,
        key=lambda record: (
            0 if record.country_code in PRIORITY_COUNTRIES else 1,
            -(record.trust_score or 0),
            record.created_at,
        ),
    )
    return ranked[0], ranked[1:]


async def resolve_duplicate_groups(
    groups: Iterable[DuplicateGroup],
    *,
    store: RecordStore,
    audit: AuditLog,
    worker_name: str,
) -> ResolutionSummary:
    """Delete every loser. Winners are never modified.

    A store failure abandons only the group being resolved; the remaining
    groups are still processed.
    """
    summary = ResolutionSummary()
    for group in groups:
        summary.groups += 1
        logger.info(
            "dedupe keep id=%s name=%r country=%s losers=%s",
            group.winner.id,
            group.winner.legal_name,
            group.winner.country_code,
            len(group.losers),
        )
        try:
            for loser in group.losers:
                await store.delete_by_id(loser.id)
                summary.deleted += 1
                summary.deleted_ids.append(loser.id)
                await audit.record(
                    worker_name,
                    "duplicate_removed",
                    loser.id,
                    {
                        "winner_id": group.winner.id,
                        "domain": group.domain,
                        "legal_name": loser.legal_name,
                        "country_code": loser.country_code,
                        "reasons": list(group.reasons),
                    },
                    True,
                )
        except RepositoryError as exc:
            summary.failed_groups += 1
            logger.exception("dedupe group failed winner_id=%s domain=%s", group.winner.id, group.domain)
            try:
                await audit.record(
                    worker_name,
                    "duplicate_group_failed",
                    group.winner.id,
                    {"domain": group.domain, "error": str(exc)},
                    False,
                )
            except RepositoryError:
                logger.exception("dedupe failure not audited winner_id=%s", group.winner.id)
    return summary


def _dot_prefix(name: str) -> str | None:
    prefix = name.split(".", 1)[0].strip().lower()
    return prefix or None


def _jaccard(left: frozenset[str], right: frozenset[str]) -> float:
    if not left or not right:
        return 0.0
    union = len(left | right)
    if union <= 0:
        return 0.0
    return len(left & right) / union
