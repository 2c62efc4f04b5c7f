"""
duplicate_scanner.py — Duplicate-project detection engine

Covers:
  - Pairwise comparison of in-scope projects (exhaustive, O(n²))
  - Hard exclusion gates (low address+name similarity, capacity gap, township mismatch)
  - Tiered confidence classification:
      high   — same display code, or same investor code + intake year + sequence
      medium — address or name similarity above the primary thresholds
      low    — same investor, same township and close capacity with weak similarity
  - Explanation criteria (matched / unmatched) for operator review
  - Greedy grouping of classified pairs that share a project and confidence level;
    a project only joins a group when no member pair is excluded or reviewed
  - Per-project duplicate warnings for list views

Pure computation: the caller supplies the project snapshot and the reviewed pair keys.
"""

import logging
import time
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from app.models.dedup_schema import (
    DuplicateGroup,
    DuplicateWarning,
    MatchCriterion,
    ProjectForComparison,
    ScannerSettings,
    ScanStats,
)
from app.services import dedup_config as cfg
from app.services.perf_monitor import timed
from app.services.similarity import (
    address_token_overlap,
    capacity_difference_percent,
    string_similarity,
)

logger = logging.getLogger("solarops-dedup.scanner")

PairKey = Tuple[str, str]


def normalize_pair(id1: str, id2: str) -> PairKey:
    """Unordered pair key: the lexicographically smaller id comes first."""
    return (id1, id2) if id1 < id2 else (id2, id1)


def pair_keys(project_ids: Sequence[str]) -> List[PairKey]:
    """Every C(N,2) normalized pair for the given ids, in selection order."""
    return [normalize_pair(a, b) for a, b in combinations(project_ids, 2)]


@dataclass
class PairMatch:
    """Classification of a single pair that survived the exclusion gates."""
    confidence_level: str
    matched: List[MatchCriterion]
    unmatched: List[MatchCriterion]
    address_similarity: float
    name_similarity: float
    address_token_overlap: float


@dataclass
class ScanResult:
    groups: List[DuplicateGroup]
    stats: ScanStats


@dataclass
class _PairSignals:
    address_similarity: float
    name_similarity: float
    token_overlap: float
    capacity_diff: float
    same_investor: bool
    same_township: bool
    same_site_code: bool
    same_investor_year_seq: bool
    blockers: List[str] = field(default_factory=list)


class DuplicateScanner:
    """
    Heuristic duplicate detector for solar projects.

    Thresholds are taken from ``ScannerSettings`` (percent values); the defaults
    mirror ``dedup_config``.
    """

    def __init__(self, settings: Optional[ScannerSettings] = None) -> None:
        self.settings = settings or ScannerSettings()

    # -----------------------------------------------------------------------
    # 1. Pair signals
    # -----------------------------------------------------------------------

    @staticmethod
    def _signals(p1: ProjectForComparison, p2: ProjectForComparison) -> _PairSignals:
        same_investor = bool(p1.investor_id and p2.investor_id and p1.investor_id == p2.investor_id)
        same_township = bool(p1.district and p2.district and p1.district == p2.district)
        same_site_code = bool(
            p1.site_code_display
            and p2.site_code_display
            and p1.site_code_display == p2.site_code_display
        )

        # All three identifier parts must be present on BOTH sides
        valid1 = bool(p1.investor_code and p1.intake_year is not None and p1.seq is not None)
        valid2 = bool(p2.investor_code and p2.intake_year is not None and p2.seq is not None)
        same_investor_year_seq = (
            valid1 and valid2
            and p1.investor_code == p2.investor_code
            and p1.intake_year == p2.intake_year
            and p1.seq == p2.seq
        )

        blockers: List[str] = []
        if not p1.site_code_display or not p2.site_code_display:
            blockers.append(cfg.BLOCKER_SITE_CODE_NULL)
        if not (valid1 and valid2):
            if p1.seq is None or p2.seq is None:
                blockers.append(cfg.BLOCKER_SEQ_NULL)
            if not p1.investor_code or not p2.investor_code:
                blockers.append(cfg.BLOCKER_INVESTOR_CODE_NULL)
            if p1.intake_year is None or p2.intake_year is None:
                blockers.append(cfg.BLOCKER_YEAR_NULL)

        return _PairSignals(
            address_similarity=string_similarity(p1.address, p2.address) * 100,
            name_similarity=string_similarity(p1.project_name, p2.project_name) * 100,
            token_overlap=address_token_overlap(p1.address, p2.address),
            capacity_diff=capacity_difference_percent(p1.capacity_kwp, p2.capacity_kwp),
            same_investor=same_investor,
            same_township=same_township,
            same_site_code=same_site_code,
            same_investor_year_seq=same_investor_year_seq,
            blockers=blockers,
        )

    def _is_excluded(self, s: _PairSignals) -> bool:
        st = self.settings
        if s.address_similarity < st.min_address_similarity and s.name_similarity < st.min_name_similarity:
            return True
        if s.capacity_diff > st.max_capacity_difference:
            return True
        # Null district on either side counts as a mismatch
        if not s.same_township:
            return True
        return False

    # -----------------------------------------------------------------------
    # 2. Confidence classification
    # -----------------------------------------------------------------------

    def classify_pair(
        self, p1: ProjectForComparison, p2: ProjectForComparison
    ) -> Optional[PairMatch]:
        """
        Classify one pair. Returns None when a hard exclusion applies or when
        no confidence gate is satisfied.
        """
        s = self._signals(p1, p2)
        if self._is_excluded(s):
            return None
        return self._classify_signals(p1, p2, s)

    def _classify_signals(
        self, p1: ProjectForComparison, p2: ProjectForComparison, s: _PairSignals
    ) -> Optional[PairMatch]:
        st = self.settings
        matched: List[MatchCriterion] = []
        unmatched: List[MatchCriterion] = []
        level: Optional[str] = None

        township_value = f"{p1.city or ''}{p1.district or ''}"
        capacity_value = f"diff {s.capacity_diff:.1f}%"
        token_pct = s.token_overlap * 100
        token_signal = s.token_overlap > 0 and token_pct >= st.min_address_token_overlap

        # ── High ──
        if s.same_site_code:
            matched.append(MatchCriterion(
                name=cfg.CRITERION_SAME_SITE_CODE, matched=True, value=p1.site_code_display,
            ))
            level = "high"
        if s.same_investor_year_seq:
            matched.append(MatchCriterion(
                name=cfg.CRITERION_SAME_INVESTOR_YEAR_SEQ,
                matched=True,
                value=f"{p1.investor_code}-{p1.intake_year}-{p1.seq}",
            ))
            level = "high"

        if not s.same_site_code:
            unmatched.append(MatchCriterion(name=cfg.CRITERION_SAME_SITE_CODE, matched=False))
        if not s.same_investor_year_seq:
            unmatched.append(MatchCriterion(
                name=cfg.CRITERION_SAME_INVESTOR_YEAR_SEQ,
                matched=False,
                value=", ".join(s.blockers) if s.blockers else cfg.BLOCKER_VALUES_DIFFER,
            ))

        # ── Medium ──
        if level is None:
            address_primary = s.address_similarity >= st.medium_address_threshold
            name_primary = s.name_similarity >= st.medium_name_threshold
            if address_primary or name_primary:
                if address_primary:
                    matched.append(MatchCriterion(
                        name=cfg.CRITERION_ADDRESS_HIGHLY_SIMILAR,
                        matched=True,
                        score=round(s.address_similarity),
                        value=f"{round(s.address_similarity)}%",
                    ))
                if name_primary:
                    matched.append(MatchCriterion(
                        name=cfg.CRITERION_NAME_HIGHLY_SIMILAR,
                        matched=True,
                        score=round(s.name_similarity),
                        value=f"{round(s.name_similarity)}%",
                    ))
                # Supporting signals only; they never grant medium on their own
                if s.same_investor:
                    matched.append(MatchCriterion(
                        name=cfg.CRITERION_SAME_INVESTOR,
                        matched=True,
                        value=p1.investor_name or p1.investor_code or "",
                    ))
                if s.same_township:
                    matched.append(MatchCriterion(
                        name=cfg.CRITERION_SAME_TOWNSHIP, matched=True, value=township_value,
                    ))
                if s.capacity_diff <= st.max_low_capacity_difference:
                    matched.append(MatchCriterion(
                        name=cfg.CRITERION_CAPACITY_CLOSE, matched=True, value=capacity_value,
                    ))
                if token_signal:
                    matched.append(MatchCriterion(
                        name=cfg.CRITERION_ADDRESS_TOKENS,
                        matched=True,
                        score=round(token_pct),
                        value=f"{round(token_pct)}%",
                    ))
                level = "medium"

        # ── Low ──
        # Reached only when both similarities are below their medium thresholds
        if level is None:
            if s.same_investor and s.same_township and s.capacity_diff <= st.max_low_capacity_difference:
                matched.append(MatchCriterion(
                    name=cfg.CRITERION_SAME_INVESTOR, matched=True, value=p1.investor_name or "",
                ))
                matched.append(MatchCriterion(
                    name=cfg.CRITERION_SAME_TOWNSHIP, matched=True, value=township_value,
                ))
                matched.append(MatchCriterion(
                    name=cfg.CRITERION_CAPACITY_CLOSE, matched=True, value=capacity_value,
                ))
                if token_signal:
                    matched.append(MatchCriterion(
                        name=cfg.CRITERION_ADDRESS_TOKENS,
                        matched=True,
                        score=round(token_pct),
                        value=f"{round(token_pct)}%",
                    ))
                unmatched.append(MatchCriterion(
                    name=cfg.CRITERION_ADDRESS_SIMILARITY,
                    matched=False,
                    score=round(s.address_similarity),
                    value=f"{round(s.address_similarity)}% (needs >= {st.medium_address_threshold:g}%)",
                ))
                unmatched.append(MatchCriterion(
                    name=cfg.CRITERION_NAME_SIMILARITY,
                    matched=False,
                    score=round(s.name_similarity),
                    value=f"{round(s.name_similarity)}% (needs >= {st.medium_name_threshold:g}%)",
                ))
                level = "low"

        if level is None:
            return None

        matched_names = {c.name for c in matched}
        unmatched_names = {c.name for c in unmatched}
        if not s.same_investor and cfg.CRITERION_SAME_INVESTOR not in matched_names:
            unmatched.append(MatchCriterion(name=cfg.CRITERION_SAME_INVESTOR, matched=False))
        if s.capacity_diff > st.max_low_capacity_difference and cfg.CRITERION_CAPACITY_CLOSE not in matched_names:
            unmatched.append(MatchCriterion(
                name=cfg.CRITERION_CAPACITY_CLOSE, matched=False, value=capacity_value,
            ))
        if (
            s.address_similarity < st.medium_address_threshold
            and cfg.CRITERION_ADDRESS_HIGHLY_SIMILAR not in matched_names
            and cfg.CRITERION_ADDRESS_SIMILARITY not in unmatched_names
        ):
            unmatched.append(MatchCriterion(
                name=cfg.CRITERION_ADDRESS_SIMILARITY,
                matched=False,
                score=round(s.address_similarity),
                value=f"{round(s.address_similarity)}%",
            ))
        if (
            s.name_similarity < st.medium_name_threshold
            and cfg.CRITERION_NAME_HIGHLY_SIMILAR not in matched_names
            and cfg.CRITERION_NAME_SIMILARITY not in unmatched_names
        ):
            unmatched.append(MatchCriterion(
                name=cfg.CRITERION_NAME_SIMILARITY,
                matched=False,
                score=round(s.name_similarity),
                value=f"{round(s.name_similarity)}%",
            ))

        return PairMatch(
            confidence_level=level,
            matched=matched,
            unmatched=unmatched,
            address_similarity=s.address_similarity,
            name_similarity=s.name_similarity,
            address_token_overlap=s.token_overlap,
        )

    # -----------------------------------------------------------------------
    # 3. Full scan
    # -----------------------------------------------------------------------

    def scan(
        self,
        projects: Sequence[ProjectForComparison],
        reviewed_pairs: Optional[Iterable[PairKey]] = None,
    ) -> ScanResult:
        """
        Compare every pair of ``projects`` and return grouped candidates.

        ``reviewed_pairs`` holds normalized (a, b) keys that must never be surfaced.
        Groups are ordered high → medium → low, insertion order within a level.
        """
        start = time.perf_counter()
        reviewed: Set[PairKey] = {normalize_pair(a, b) for a, b in (reviewed_pairs or ())}
        processed: Set[PairKey] = set()
        exclusions: Dict[PairKey, bool] = {}
        groups: List[DuplicateGroup] = []
        compared = skipped = excluded = dropped = 0

        for i in range(len(projects)):
            for j in range(i + 1, len(projects)):
                p1, p2 = projects[i], projects[j]
                if p1.id == p2.id:
                    continue
                key = normalize_pair(p1.id, p2.id)
                if key in reviewed:
                    skipped += 1
                    continue
                if key in processed:
                    continue

                compared += 1
                signals = self._signals(p1, p2)
                exclusions[key] = self._is_excluded(signals)
                if exclusions[key]:
                    excluded += 1
                    continue
                match = self._classify_signals(p1, p2, signals)
                if match is None:
                    dropped += 1
                    continue

                processed.add(key)
                self._add_to_groups(groups, p1, p2, match, reviewed, exclusions)

        groups.sort(key=lambda g: cfg.CONFIDENCE_ORDER[g.confidence_level])

        stats = ScanStats(
            high=sum(1 for g in groups if g.confidence_level == "high"),
            medium=sum(1 for g in groups if g.confidence_level == "medium"),
            low=sum(1 for g in groups if g.confidence_level == "low"),
            total=len(groups),
            projects_scanned=len(projects),
            pairs_compared=compared,
            pairs_skipped_reviewed=skipped,
            pairs_excluded=excluded,
            pairs_unclassified=dropped,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        logger.info(
            f"Duplicate scan: {stats.projects_scanned} projects, {compared} pairs compared, "
            f"{stats.total} groups (high={stats.high}, medium={stats.medium}, low={stats.low})",
            extra={"duration_ms": stats.duration_ms},
        )
        return ScanResult(groups=groups, stats=stats)

    def _can_share_group(
        self,
        p1: ProjectForComparison,
        p2: ProjectForComparison,
        reviewed: Set[PairKey],
        exclusions: Dict[PairKey, bool],
    ) -> bool:
        key = normalize_pair(p1.id, p2.id)
        if key in reviewed:
            return False
        if key not in exclusions:
            exclusions[key] = self._is_excluded(self._signals(p1, p2))
        return not exclusions[key]

    def _add_to_groups(
        self,
        groups: List[DuplicateGroup],
        p1: ProjectForComparison,
        p2: ProjectForComparison,
        match: PairMatch,
        reviewed: Set[PairKey],
        exclusions: Dict[PairKey, bool],
    ) -> None:
        # First group with the same level that already holds either project and
        # accepts the newcomer against every member wins; otherwise a new group.
        # Groups are never joined across levels or with each other.
        for group in groups:
            if group.confidence_level != match.confidence_level:
                continue
            ids = set(group.project_ids())
            if p1.id not in ids and p2.id not in ids:
                continue
            newcomers = [p for p in (p1, p2) if p.id not in ids]
            if not all(
                self._can_share_group(p, member, reviewed, exclusions)
                for p in newcomers
                for member in group.projects
            ):
                continue
            group.projects.extend(newcomers)
            _union_criteria(group.matched_criteria, match.matched)
            _union_criteria(group.unmatched_criteria, match.unmatched)
            group.address_similarity = max(group.address_similarity, match.address_similarity)
            group.name_similarity = max(group.name_similarity, match.name_similarity)
            group.address_token_overlap = max(group.address_token_overlap, match.address_token_overlap)
            return

        groups.append(DuplicateGroup(
            id=f"group-{len(groups) + 1}",
            confidence_level=match.confidence_level,
            matched_criteria=list(match.matched),
            unmatched_criteria=list(match.unmatched),
            projects=[p1, p2],
            address_similarity=match.address_similarity,
            name_similarity=match.name_similarity,
            address_token_overlap=match.address_token_overlap,
        ))

    # -----------------------------------------------------------------------
    # 4. Per-project warnings
    # -----------------------------------------------------------------------

    @timed
    def duplicate_warnings(
        self, projects: Sequence[ProjectForComparison]
    ) -> Dict[str, DuplicateWarning]:
        """
        Map project id → warning for every project involved in a high or medium
        classification. Reviewed pairs are not consulted here.
        """
        warnings: Dict[str, DuplicateWarning] = {}
        if len(projects) < 2:
            return warnings

        for p1, p2 in combinations(projects, 2):
            if p1.id == p2.id:
                continue
            match = self.classify_pair(p1, p2)
            if match is None or match.confidence_level == "low":
                continue
            reason = match.matched[0].name if match.matched else ""
            if match.matched and match.matched[0].value:
                reason = f"{reason}: {match.matched[0].value}"
            for this, other in ((p1, p2), (p2, p1)):
                w = warnings.setdefault(this.id, DuplicateWarning(project_id=this.id))
                w.duplicate_project_ids.append(other.id)
                if not w.reason:
                    w.reason = reason
        return warnings


def _union_criteria(target: List[MatchCriterion], extra: Iterable[MatchCriterion]) -> None:
    names = {c.name for c in target}
    for c in extra:
        if c.name not in names:
            target.append(c)
            names.add(c.name)
