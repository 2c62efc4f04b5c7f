"""
test_duplicate_scanner.py — Unit tests for DuplicateScanner.

Tests cover:
  - Hard exclusions: weak address + name, capacity gap, township mismatch / missing
  - High confidence: display code, investor code + year + sequence, blockers
  - Medium confidence: address / name thresholds plus supporting signals
  - Low confidence: same investor + township + close capacity below medium thresholds
  - Grouping: shared-project merge within a level, no merge across levels, ordering,
    no excluded or reviewed pair inside any group
  - Reviewed pairs: skipped and counted, never surfaced
  - Scan statistics
  - Per-project duplicate warnings (high / medium only)
  - Threshold overrides through ScannerSettings

All tests are pure unit tests; no database or external services required.

Reference strings used throughout (similarities are percentages):
  ADDR_A  = 台南市安南區安和路一段100號
  ADDR_B  = 台南市安南區安和路一段102號   ADDR_A vs ADDR_B ≈ 85.7
  ADDR_C  = 台南市安南區海佃路二段55巷8號 ADDR_A vs ADDR_C ≈ 34.5
  ADDR_FAR = 高雄市路竹區中山路200號       ADDR_FAR vs ADDR_A ≈ 15.4, vs ADDR_B = 0
  NAME_1 = 安南一號案場, NAME_2 = 安南一號光電   ≈ 60
  NAME_3 = 安南光電二期                          NAME_1 vs NAME_3 = 20
  NAME_4 = 七股光電二期                          NAME_1 vs NAME_4 = 0
"""

import logging
from itertools import combinations

import pytest

from app.models.dedup_schema import ScannerSettings
from app.services import dedup_config as cfg
from app.services.duplicate_scanner import DuplicateScanner, normalize_pair, pair_keys
from app.services.similarity import string_similarity


ADDR_A = "台南市安南區安和路一段100號"
ADDR_B = "台南市安南區安和路一段102號"
ADDR_C = "台南市安南區海佃路二段55巷8號"
ADDR_FAR = "高雄市路竹區中山路200號"
NAME_1 = "安南一號案場"
NAME_2 = "安南一號光電"
NAME_3 = "安南光電二期"
NAME_4 = "七股光電二期"


def _names(criteria):
    return [c.name for c in criteria]


# ===========================================================================
# Class 1: Pair keys
# ===========================================================================

class TestPairKeys:

    def test_normalize_pair_is_order_independent(self):
        assert normalize_pair("b", "a") == ("a", "b")
        assert normalize_pair("a", "b") == ("a", "b")

    def test_pair_keys_count_is_n_choose_2(self):
        assert len(pair_keys(["a", "b", "c", "d"])) == 6
        assert pair_keys(["b", "a"]) == [("a", "b")]


# ===========================================================================
# Class 2: Hard exclusions
# ===========================================================================

class TestHardExclusions:

    def test_weak_address_and_name_excluded_even_with_same_site_code(self, scanner, make_project):
        """Exclusion gates run before the high-confidence checks."""
        p1 = make_project(project_name=NAME_1, address=ADDR_A, site_code_display="INV01-2024-003")
        p2 = make_project(project_name=NAME_4, address=ADDR_FAR, site_code_display="INV01-2024-003")
        assert scanner.classify_pair(p1, p2) is None

    def test_capacity_gap_over_50_percent_excluded(self, scanner, make_project):
        """|100 − 200| / 150 ≈ 66.7 % > 50 %."""
        p1 = make_project(capacity_kwp=100)
        p2 = make_project(capacity_kwp=200)
        assert scanner.classify_pair(p1, p2) is None

    def test_missing_capacity_excluded(self, scanner, make_project):
        """Identical projects still drop out: unknown capacity reads as a 100 % gap."""
        p1 = make_project(capacity_kwp=None)
        p2 = make_project()
        assert scanner.classify_pair(p1, p2) is None

    def test_different_districts_never_grouped(self, scanner, make_project):
        p1 = make_project(district="安南區")
        p2 = make_project(district="永康區")
        assert scanner.classify_pair(p1, p2) is None
        assert scanner.scan([p1, p2]).groups == []

    def test_missing_district_counts_as_mismatch(self, scanner, make_project):
        p1 = make_project(district=None)
        p2 = make_project(district=None)
        assert scanner.classify_pair(p1, p2) is None

    def test_no_grouped_pair_below_both_minimums(self, scanner, make_project):
        """
        A–B medium (same name), B–C medium (address ≈ 85.7 %),
        A–C excluded (address 0 %, name 0 %): C must not join the A–B group.
        """
        a = make_project(project_name=NAME_1, address=ADDR_FAR)
        b = make_project(project_name=NAME_1, address=ADDR_A)
        c = make_project(project_name=NAME_4, address=ADDR_B)
        assert scanner.classify_pair(a, c) is None

        result = scanner.scan([a, b, c])
        for group in result.groups:
            for p1, p2 in combinations(group.projects, 2):
                assert (
                    string_similarity(p1.address, p2.address) * 100 >= 40
                    or string_similarity(p1.project_name, p2.project_name) * 100 >= 40
                )
        assert [set(g.project_ids()) for g in result.groups] == [{a.id, b.id}, {b.id, c.id}]
        assert result.stats.pairs_excluded == 1

    def test_capacity_chain_does_not_bridge_group(self, scanner, make_project):
        """
        100 → 140 → 196 kWp: neighbours differ by 40/120 ≈ 33.3 % and 56/168 ≈ 33.3 %,
        but 100 vs 196 differs by 96/148 ≈ 64.9 % > 50 %.
        """
        a = make_project(capacity_kwp=100)
        b = make_project(capacity_kwp=140)
        c = make_project(capacity_kwp=196)
        assert scanner.classify_pair(a, c) is None

        result = scanner.scan([a, b, c])
        for group in result.groups:
            ids = set(group.project_ids())
            assert not {a.id, c.id} <= ids
        assert len(result.groups) == 2


# ===========================================================================
# Class 3: High confidence
# ===========================================================================

class TestHighConfidence:

    def test_same_site_code_is_high_despite_different_address(self, scanner, make_project):
        p1 = make_project(address=ADDR_A, site_code_display="INV01-2024-003")
        p2 = make_project(address=ADDR_FAR, site_code_display="INV01-2024-003")
        match = scanner.classify_pair(p1, p2)
        assert match is not None
        assert match.confidence_level == "high"
        assert match.matched[0].name == cfg.CRITERION_SAME_SITE_CODE
        assert match.matched[0].value == "INV01-2024-003"

    def test_same_investor_code_year_and_seq_is_high(self, scanner, make_project):
        p1 = make_project(intake_year=2024, seq=3)
        p2 = make_project(intake_year=2024, seq=3, project_name=NAME_2, address=ADDR_C)
        match = scanner.classify_pair(p1, p2)
        assert match.confidence_level == "high"
        assert cfg.CRITERION_SAME_INVESTOR_YEAR_SEQ in _names(match.matched)
        criterion = next(c for c in match.matched if c.name == cfg.CRITERION_SAME_INVESTOR_YEAR_SEQ)
        assert criterion.value == "INV01-2024-3"

    def test_different_seq_is_not_high(self, scanner, make_project):
        p1 = make_project(intake_year=2024, seq=3, site_code_display="INV01-2024-003")
        p2 = make_project(intake_year=2024, seq=4, site_code_display="INV01-2024-004")
        match = scanner.classify_pair(p1, p2)
        assert match.confidence_level != "high"
        blocked = next(c for c in match.unmatched if c.name == cfg.CRITERION_SAME_INVESTOR_YEAR_SEQ)
        assert blocked.value == cfg.BLOCKER_VALUES_DIFFER

    def test_missing_identifier_parts_are_reported_as_blockers(self, scanner, make_project):
        p1 = make_project(intake_year=2024, seq=None, investor_code=None)
        p2 = make_project(intake_year=None, seq=3)
        match = scanner.classify_pair(p1, p2)
        blocked = next(c for c in match.unmatched if c.name == cfg.CRITERION_SAME_INVESTOR_YEAR_SEQ)
        for blocker in (cfg.BLOCKER_SEQ_NULL, cfg.BLOCKER_INVESTOR_CODE_NULL, cfg.BLOCKER_YEAR_NULL):
            assert blocker in blocked.value
        site = next(c for c in match.unmatched if c.name == cfg.CRITERION_SAME_SITE_CODE)
        assert site.matched is False

    def test_both_high_criteria_listed(self, scanner, make_project):
        p1 = make_project(site_code_display="INV01-2024-003", intake_year=2024, seq=3)
        p2 = make_project(site_code_display="INV01-2024-003", intake_year=2024, seq=3)
        match = scanner.classify_pair(p1, p2)
        assert _names(match.matched)[:2] == [
            cfg.CRITERION_SAME_SITE_CODE,
            cfg.CRITERION_SAME_INVESTOR_YEAR_SEQ,
        ]


# ===========================================================================
# Class 4: Medium confidence
# ===========================================================================

class TestMediumConfidence:

    def test_high_address_low_name_same_investor_close_capacity(self, scanner, make_project):
        """
        address ≈ 85.7 % (≥ 80), name = 20 %, same investor, same township,
        capacity 95 vs 105 → 10 % gap → medium with supporting signals.
        """
        p1 = make_project(project_name=NAME_1, address=ADDR_A, capacity_kwp=95)
        p2 = make_project(project_name=NAME_3, address=ADDR_B, capacity_kwp=105)
        match = scanner.classify_pair(p1, p2)
        assert match.confidence_level == "medium"
        names = _names(match.matched)
        assert names[0] == cfg.CRITERION_ADDRESS_HIGHLY_SIMILAR
        for expected in (cfg.CRITERION_SAME_INVESTOR, cfg.CRITERION_SAME_TOWNSHIP, cfg.CRITERION_CAPACITY_CLOSE):
            assert expected in names
        assert match.address_similarity == pytest.approx(24 / 28 * 100)
        assert match.name_similarity == pytest.approx(20.0)
        assert cfg.CRITERION_NAME_SIMILARITY in _names(match.unmatched)

    def test_high_name_alone_is_medium(self, scanner, make_project):
        p1 = make_project(project_name="Sunrise Solar Park", address=ADDR_A, investor_id="inv-1")
        p2 = make_project(project_name="sunrise-solar park", address=ADDR_C, investor_id="inv-2")
        match = scanner.classify_pair(p1, p2)
        assert match.confidence_level == "medium"
        assert cfg.CRITERION_NAME_HIGHLY_SIMILAR in _names(match.matched)
        assert cfg.CRITERION_SAME_INVESTOR in _names(match.unmatched)

    def test_capacity_gap_reported_as_unmatched(self, scanner, make_project):
        """100 vs 130 → 26.1 % gap: passes the 50 % gate, fails "capacity close"."""
        p1 = make_project(capacity_kwp=100)
        p2 = make_project(capacity_kwp=130)
        match = scanner.classify_pair(p1, p2)
        assert match.confidence_level == "medium"
        assert cfg.CRITERION_CAPACITY_CLOSE in _names(match.unmatched)

    def test_address_tokens_recorded_as_supporting_signal(self, scanner, make_project):
        p1 = make_project(address=ADDR_A)
        p2 = make_project(address=ADDR_B)
        match = scanner.classify_pair(p1, p2)
        token = next(c for c in match.matched if c.name == cfg.CRITERION_ADDRESS_TOKENS)
        assert token.score == 100


# ===========================================================================
# Class 5: Low confidence
# ===========================================================================

class TestLowConfidence:

    def test_same_investor_township_close_capacity(self, scanner, make_project):
        """address ≈ 34.5 %, name = 60 %: clears the 40 % gate but not medium."""
        p1 = make_project(project_name=NAME_1, address=ADDR_A, capacity_kwp=100)
        p2 = make_project(project_name=NAME_2, address=ADDR_C, capacity_kwp=110)
        match = scanner.classify_pair(p1, p2)
        assert match.confidence_level == "low"
        assert _names(match.matched)[:3] == [
            cfg.CRITERION_SAME_INVESTOR,
            cfg.CRITERION_SAME_TOWNSHIP,
            cfg.CRITERION_CAPACITY_CLOSE,
        ]
        unmatched = _names(match.unmatched)
        assert cfg.CRITERION_ADDRESS_SIMILARITY in unmatched
        assert cfg.CRITERION_NAME_SIMILARITY in unmatched

    def test_different_investor_drops_pair(self, scanner, make_project):
        p1 = make_project(project_name=NAME_1, address=ADDR_C, investor_id="inv-1")
        p2 = make_project(project_name=NAME_2, address=ADDR_A, investor_id="inv-2")
        assert scanner.classify_pair(p1, p2) is None

    def test_capacity_over_15_percent_drops_pair(self, scanner, make_project):
        p1 = make_project(project_name=NAME_1, address=ADDR_A, capacity_kwp=100)
        p2 = make_project(project_name=NAME_2, address=ADDR_C, capacity_kwp=130)
        assert scanner.classify_pair(p1, p2) is None


# ===========================================================================
# Class 6: Full scan and grouping
# ===========================================================================

class TestScanGrouping:

    def test_three_projects_sharing_site_code_form_one_group(self, scanner, make_project):
        projects = [make_project(site_code_display="INV01-2024-003") for _ in range(3)]
        result = scanner.scan(projects)
        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.confidence_level == "high"
        assert group.project_ids() == [p.id for p in projects]
        # Criteria are unioned by name, not repeated per pair
        assert _names(group.matched_criteria).count(cfg.CRITERION_SAME_SITE_CODE) == 1

    def test_groups_never_merge_across_levels(self, scanner, make_project):
        """
        A–B high (shared site code, same name), B–C medium (address ≈ 85.7 %),
        A–C excluded (address and name both 0 %).
        """
        a = make_project(project_name=NAME_1, address=ADDR_FAR, site_code_display="INV01-2024-003")
        b = make_project(project_name=NAME_1, address=ADDR_A, site_code_display="INV01-2024-003")
        c = make_project(project_name=NAME_4, address=ADDR_B)
        result = scanner.scan([a, b, c])
        assert [g.confidence_level for g in result.groups] == ["high", "medium"]
        assert set(result.groups[0].project_ids()) == {a.id, b.id}
        assert set(result.groups[1].project_ids()) == {b.id, c.id}

    def test_groups_sorted_high_medium_low(self, scanner, make_project):
        low_1 = make_project(project_name=NAME_1, address=ADDR_A, investor_id="inv-9", district="七股區")
        low_2 = make_project(project_name=NAME_2, address=ADDR_C, investor_id="inv-9", district="七股區")
        med_1 = make_project(address=ADDR_A, district="永康區", project_name=NAME_1)
        med_2 = make_project(address=ADDR_B, district="永康區", project_name=NAME_3)
        high_1 = make_project(site_code_display="X-1", district="新營區")
        high_2 = make_project(site_code_display="X-1", district="新營區")
        result = scanner.scan([low_1, low_2, med_1, med_2, high_1, high_2])
        assert [g.confidence_level for g in result.groups] == ["high", "medium", "low"]

    def test_group_keeps_max_similarity(self, scanner, make_project):
        a = make_project(project_name=NAME_1, address=ADDR_A)
        b = make_project(project_name=NAME_1, address=ADDR_A)
        c = make_project(project_name=NAME_3, address=ADDR_B)
        result = scanner.scan([a, b, c])
        medium = [g for g in result.groups if g.confidence_level == "medium"]
        assert len(medium) == 1
        assert medium[0].address_similarity == pytest.approx(100.0)
        assert medium[0].name_similarity == pytest.approx(100.0)

    def test_stats(self, scanner, make_project):
        projects = [make_project(site_code_display="INV01-2024-003") for _ in range(3)]
        projects.append(make_project(district="永康區"))
        stats = scanner.scan(projects).stats
        assert stats.high == 1
        assert stats.medium == 0
        assert stats.low == 0
        assert stats.total == 1
        assert stats.projects_scanned == 4
        assert stats.pairs_compared == 6
        assert stats.duration_ms >= 0

    def test_empty_and_single_project(self, scanner, make_project):
        assert scanner.scan([]).groups == []
        result = scanner.scan([make_project()])
        assert result.groups == []
        assert result.stats.pairs_compared == 0


# ===========================================================================
# Class 7: Reviewed pairs
# ===========================================================================

class TestReviewedPairs:

    def test_reviewed_pair_is_skipped(self, scanner, make_project):
        a = make_project(site_code_display="INV01-2024-003")
        b = make_project(site_code_display="INV01-2024-003")
        result = scanner.scan([a, b], reviewed_pairs={normalize_pair(b.id, a.id)})
        assert result.groups == []
        assert result.stats.pairs_skipped_reviewed == 1
        assert result.stats.pairs_compared == 0

    def test_reviewed_pair_key_order_does_not_matter(self, scanner, make_project):
        a = make_project(site_code_display="INV01-2024-003")
        b = make_project(site_code_display="INV01-2024-003")
        result = scanner.scan([a, b], reviewed_pairs=[(max(a.id, b.id), min(a.id, b.id))])
        assert result.groups == []

    def test_reviewed_pair_never_shares_a_group(self, scanner, make_project):
        """C matches both A and B, yet the dismissed A–B pair stays apart."""
        a, b, c = (make_project(site_code_display="INV01-2024-003") for _ in range(3))
        result = scanner.scan([a, b, c], reviewed_pairs={normalize_pair(a.id, b.id)})
        assert [set(g.project_ids()) for g in result.groups] == [{a.id, c.id}, {b.id, c.id}]
        for group in result.groups:
            assert not {a.id, b.id} <= set(group.project_ids())


# ===========================================================================
# Class 8: Warnings
# ===========================================================================

class TestDuplicateWarnings:

    def test_high_and_medium_pairs_flag_both_projects(self, scanner, make_project):
        a = make_project(site_code_display="INV01-2024-003")
        b = make_project(site_code_display="INV01-2024-003")
        warnings = scanner.duplicate_warnings([a, b])
        assert warnings[a.id].duplicate_project_ids == [b.id]
        assert warnings[b.id].duplicate_project_ids == [a.id]
        assert warnings[a.id].reason == f"{cfg.CRITERION_SAME_SITE_CODE}: INV01-2024-003"

    def test_low_pairs_do_not_warn(self, scanner, make_project):
        p1 = make_project(project_name=NAME_1, address=ADDR_A)
        p2 = make_project(project_name=NAME_2, address=ADDR_C)
        assert scanner.duplicate_warnings([p1, p2]) == {}

    def test_single_project_has_no_warnings(self, scanner, make_project):
        assert scanner.duplicate_warnings([make_project()]) == {}

    def test_warnings_pass_is_timed(self, scanner, make_project, caplog):
        with caplog.at_level(logging.DEBUG, logger="solarops-api.perf"):
            scanner.duplicate_warnings([make_project(), make_project()])
        timed = [r for r in caplog.records if getattr(r, "function_name", None)]
        assert [r.function_name for r in timed] == ["DuplicateScanner.duplicate_warnings"]
        assert timed[0].duration_ms >= 0


# ===========================================================================
# Class 9: Settings overrides
# ===========================================================================

class TestScannerSettings:

    def test_defaults(self):
        s = ScannerSettings()
        assert (s.min_address_similarity, s.min_name_similarity) == (40, 40)
        assert s.max_capacity_difference == 50
        assert (s.medium_address_threshold, s.medium_name_threshold) == (80, 75)
        assert s.max_low_capacity_difference == 15

    def test_overrides_ignore_unknown_and_none(self):
        s = ScannerSettings().with_overrides({"medium_address_threshold": 90, "bogus": 1, "min_name_similarity": None})
        assert s.medium_address_threshold == 90
        assert s.min_name_similarity == 40

    def test_raised_medium_threshold_changes_classification(self, make_project):
        p1 = make_project(project_name=NAME_1, address=ADDR_A)
        p2 = make_project(project_name=NAME_3, address=ADDR_B)
        strict = DuplicateScanner(ScannerSettings(medium_address_threshold=90))
        match = strict.classify_pair(p1, p2)
        # 85.7 % no longer reaches medium; same investor/township/capacity → low
        assert match.confidence_level == "low"
