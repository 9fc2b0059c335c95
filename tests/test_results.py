"""
Tests for joining, timing and ranking results.
"""

import pytest

from leaderboard.indexes import build_roster_index, build_scan_set
from leaderboard.results import DNF, DSQ, compute_results, participant_detail
from leaderboard.timing import CategoryTimingRule, TimingConfig

HOUR = 3_600_000
MASTER = ["EPC", "BIB", "Name", "Gender", "Category"]
SCANS = ["EPC", "Times"]


def run(master_rows, finish_rows, start_rows=None, config=None, categories=("5K",), checkpoint_rows=None):
    categories = list(categories)
    roster = build_roster_index([MASTER] + master_rows, categories)
    scans = build_scan_set(
        [SCANS] + finish_rows,
        [SCANS] + start_rows if start_rows is not None else None,
        [SCANS] + checkpoint_rows if checkpoint_rows is not None else None,
    )
    return compute_results(roster, scans, config or TimingConfig(), categories)


def runner(epc, category="5K", gender="M"):
    return [epc, epc.replace("E", "1"), f"Runner {epc}", gender, category]


class TestScenarios:

    def test_single_finisher(self):
        result = run([runner("E1")], [["E1", "7200000"]], [["E1", "0"]])
        assert len(result.overall) == 1
        row = result.overall[0]
        assert row.total_time_ms == 7200000
        assert row.total_time_display == "02:00:00"
        assert row.rank == 1
        assert row.start_source == "individual_start"

    def test_over_cutoff_is_dnf(self):
        config = TimingConfig.build(cutoff_ms=3600000)
        result = run([runner("E1")], [["E1", "7200000"]], [["E1", "0"]], config)
        row = result.overall[0]
        assert row.total_time_display == DNF
        assert row.rank is None
        assert result.rank_index.finisher_rank_by_epc == {}

    def test_disqualified_is_dsq_even_over_cutoff(self):
        config = TimingConfig.build(cutoff_ms=3600000, dq={"E1": True})
        result = run([runner("E1")], [["E1", "7200000"]], [["E1", "0"]], config)
        row = result.overall[0]
        assert row.total_time_display == DSQ
        assert row.rank is None

    def test_negative_override_falls_back_to_start_scan(self):
        config = TimingConfig(category_rules={"5K": CategoryTimingRule(absolute_ms=1000)})
        result = run([runner("E1")], [["E1", "500"]], [["E1", "0"]], config)
        assert result.overall[0].total_time_ms == 500
        assert result.overall[0].start_source == "individual_start"

    def test_negative_override_without_start_excludes(self):
        config = TimingConfig(category_rules={"5K": CategoryTimingRule(absolute_ms=1000)})
        result = run([runner("E1")], [["E1", "500"]], config=config)
        assert result.overall == []
        assert result.diagnostics.excluded_reasons == {"missing_start": 1}

    def test_first_finish_scan_wins(self):
        result = run([runner("E1")], [["E1", "5000"], ["E1", "4000"]], [["E1", "0"]])
        assert result.overall[0].total_time_ms == 5000


class TestJoin:

    def test_elapsed_is_exact_difference(self):
        result = run(
            [runner("E1"), runner("E2")],
            [["E1", "1736060400123"], ["E2", "1736060400999"]],
            [["E1", "1736056800000"], ["E2", "1736056800001"]],
        )
        times = {row.epc: row.total_time_ms for row in result.overall}
        assert times == {"E1": 3600123, "E2": 3600998}

    def test_participant_without_finish_has_no_row(self):
        result = run([runner("E1"), runner("E2")], [["E1", "1000"]], [["E1", "0"], ["E2", "0"]])
        assert [row.epc for row in result.overall] == ["E1"]
        assert result.diagnostics.excluded_reasons == {"no_finish": 1}

    def test_scan_for_unknown_epc_is_ignored(self):
        result = run([runner("E1")], [["E1", "1000"], ["X9", "500"]], [["E1", "0"], ["X9", "0"]])
        assert [row.epc for row in result.overall] == ["E1"]

    def test_roster_last_row_wins(self):
        master = [runner("E1", gender="M"), ["E1", "555", "Renamed", "F", "5K"]]
        result = run(master, [["E1", "1000"]], [["E1", "0"]])
        row = result.overall[0]
        assert row.name == "Renamed"
        assert row.bib == "555"
        assert row.gender == "F"

    def test_unparsed_finish_and_negative_elapsed_are_diagnosed(self):
        result = run(
            [runner("E1"), runner("E2"), runner("E3")],
            [["E1", "garbage"], ["E2", "1000"], ["E3", "1000"]],
            [["E2", "2000"], ["E3", "0"]],
        )
        assert [row.epc for row in result.overall] == ["E3"]
        diagnostics = result.diagnostics
        assert diagnostics.excluded_count == 2
        assert diagnostics.excluded_reasons == {"finish_unparsed": 1, "negative_elapsed": 1}
        assert diagnostics.scan_unparsed_rows == 1

    def test_out_of_range_numeric_finish_does_not_block_others(self):
        config = TimingConfig.build(category_start_times={"5K": "07:00"})
        result = run(
            [runner("E1"), runner("E2")],
            [["E1", "1736060400123456"], ["E2", "2025-01-05 09:00:00"]],
            config=config,
        )
        assert [row.epc for row in result.overall] == ["E2"]
        assert result.overall[0].total_time_display == "02:00:00"
        assert result.diagnostics.excluded_reasons == {"finish_unparsed": 1}

    def test_skipped_rows_are_counted(self):
        result = run(
            [runner("E1"), ["", "999", "Ghost", "M", "5K"]],
            [["E1", "1000"], ["", "900"]],
            [["E1", "0"]],
        )
        assert result.diagnostics.roster_skipped_rows == 1
        assert result.diagnostics.scan_skipped_rows == 1

    def test_finish_time_shows_time_of_day(self):
        result = run(
            [runner("E1")],
            [["E1", "2025-01-05 09:30:15.250"]],
            [["E1", "2025-01-05 07:00:00"]],
        )
        row = result.overall[0]
        assert row.finish_time_raw == "09:30:15.250"
        assert row.total_time_display == "02:30:15"


class TestRanking:

    def test_overall_and_gender_ranks(self):
        master = [
            runner("E1", gender="M"),
            runner("E2", gender="F"),
            runner("E3", gender="m"),
            runner("E4", gender="F"),
        ]
        finish = [["E1", "3000"], ["E2", "2000"], ["E3", "1000"], ["E4", "4000"]]
        start = [[epc, "0"] for epc in ("E1", "E2", "E3", "E4")]
        result = run(master, finish, start)

        assert [row.epc for row in result.overall] == ["E3", "E2", "E1", "E4"]
        assert [row.rank for row in result.overall] == [1, 2, 3, 4]
        assert result.rank_index.gender_rank_by_epc == {"E3": 1, "E2": 1, "E1": 2, "E4": 2}

    def test_ranks_are_monotonic_and_ties_keep_roster_order(self):
        master = [runner("E1"), runner("E2"), runner("E3")]
        finish = [["E1", "2000"], ["E2", "1000"], ["E3", "1000"]]
        start = [["E1", "0"], ["E2", "0"], ["E3", "0"]]
        result = run(master, finish, start)
        assert [row.epc for row in result.overall] == ["E2", "E3", "E1"]
        ranked = result.overall
        for earlier, later in zip(ranked, ranked[1:]):
            assert earlier.total_time_ms <= later.total_time_ms
            assert earlier.rank < later.rank

    def test_category_ranks_only_for_declared_categories(self):
        master = [runner("E1", "5K"), runner("E2", "10K"), runner("E3", "Fun Run"), runner("E4", "10K")]
        finish = [["E1", "4000"], ["E2", "3000"], ["E3", "1000"], ["E4", "2000"]]
        start = [[epc, "0"] for epc in ("E1", "E2", "E3", "E4")]
        result = run(master, finish, start, categories=("5K", "10K"))

        assert [row.epc for row in result.overall] == ["E3", "E4", "E2", "E1"]
        assert result.rank_index.category_rank_by_epc == {"E4": 1, "E2": 2, "E1": 1}
        assert set(result.by_category) == {"5K", "10K"}
        assert [row.epc for row in result.by_category["10K"]] == ["E4", "E2"]

    def test_declared_category_without_rows_is_listed(self):
        result = run([runner("E1")], [["E1", "1000"]], [["E1", "0"]], categories=("5K", "10K"))
        assert result.by_category["10K"] == []

    def test_dnf_and_dsq_follow_finishers_without_rank(self):
        master = [runner("E1"), runner("E2"), runner("E3"), runner("E4"), runner("E5")]
        finish = [
            ["E1", str(5 * HOUR)],
            ["E2", str(4 * HOUR)],
            ["E3", str(HOUR)],
            ["E4", str(2 * HOUR)],
            ["E5", str(2 * HOUR)],
        ]
        start = [[f"E{i}", "0"] for i in range(1, 6)]
        config = TimingConfig.build(cutoff_ms=3, dq={"E4": True, "E2": True})
        result = run(master, finish, start, config)

        assert [row.epc for row in result.overall] == ["E3", "E5", "E1", "E2", "E4"]
        displays = [row.total_time_display for row in result.overall]
        assert displays == ["01:00:00", "02:00:00", DNF, DSQ, DSQ]
        assert [row.rank for row in result.overall] == [1, 2, None, None, None]
        for row in result.overall:
            if row.total_time_display in (DNF, DSQ):
                assert row.rank is None
                assert row.epc not in result.rank_index.category_rank_by_epc
        assert [row.epc for row in result.by_category["5K"]] == ["E3", "E5", "E1", "E2", "E4"]

    def test_dnf_rows_are_sorted_by_time(self):
        master = [runner("E1"), runner("E2")]
        finish = [["E1", str(6 * HOUR)], ["E2", str(5 * HOUR)]]
        start = [["E1", "0"], ["E2", "0"]]
        result = run(master, finish, start, TimingConfig.build(cutoff_ms=1))
        assert [row.epc for row in result.overall] == ["E2", "E1"]
        assert all(row.total_time_display == DNF for row in result.overall)


class TestParticipantDetail:

    def test_detail_with_ranks_and_checkpoints(self):
        result = run(
            [runner("E1", gender="F"), runner("E2", gender="M")],
            [["E1", "2025-01-05 08:00:00"], ["E2", "2025-01-05 07:50:00"]],
            [["E1", "2025-01-05 07:00:00"], ["E2", "2025-01-05 07:00:00"]],
            checkpoint_rows=[
                ["E1", "2025-01-05 07:20:00"],
                ["E2", "2025-01-05 07:18:00"],
                ["E1", "2025-01-05 07:40:00"],
            ],
        )
        detail = participant_detail(result, "E1")
        assert detail.total_time_display == "01:00:00"
        assert detail.finish_time_raw == "08:00:00"
        assert detail.checkpoint_times == ["07:20:00", "07:40:00"]
        assert detail.overall_rank == 2
        assert detail.gender_rank == 1
        assert detail.category_rank == 2

    def test_dsq_detail_has_no_ranks(self):
        config = TimingConfig.build(dq={"E1": True})
        result = run([runner("E1")], [["E1", "1000"]], [["E1", "0"]], config)
        detail = participant_detail(result, "E1")
        assert detail.total_time_display == DSQ
        assert detail.overall_rank is None
        assert detail.gender_rank is None
        assert detail.checkpoint_times == []

    @pytest.mark.parametrize("epc", ["E2", ""])
    def test_unknown_participant(self, epc):
        result = run([runner("E1"), runner("E2")], [["E1", "1000"]], [["E1", "0"]])
        assert participant_detail(result, epc) is None
