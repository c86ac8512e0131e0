"""Tests for gap and completeness analysis."""

import pytest

from longbox.analysis.completeness import (
    calculate_completeness,
    completion_percentage,
    edition_line_breakdown,
)
from longbox.models.catalog import Edition, IssueKey, OwnershipState
from longbox.models.failure import CatalogLookupError
from longbox.services.collection_graph import CollectionGraph
from longbox.sync.clock import ManualClock


def _own(graph: CollectionGraph, number: str, line: str = "original", volume: int = 1):
    return graph.set_ownership(IssueKey("saga", volume, number), line, OwnershipState.OWNED)


class TestCompletionPercentage:
    def test_zero_total(self) -> None:
        assert completion_percentage(0, 0) == 0.0

    def test_rounds_half_up_to_two_places(self) -> None:
        """1/3 -> 33.33, 2/3 -> 66.67, 1/8 -> 12.5."""
        assert completion_percentage(1, 3) == 33.33
        assert completion_percentage(2, 3) == 66.67
        assert completion_percentage(1, 8) == 12.5

    def test_half_cent_rounds_up(self) -> None:
        """1/16 = 6.25 exactly; 1/1600 = 0.0625 rounds to 0.06; 1/800 = 0.125 rounds to 0.13."""
        assert completion_percentage(1, 16) == 6.25
        assert completion_percentage(1, 1600) == 0.06
        assert completion_percentage(1, 800) == 0.13


class TestCalculateCompleteness:
    def test_empty_series(self, graph: CollectionGraph) -> None:
        """A series with no issues is 0% complete with nothing missing."""
        graph.add_series("saga", "Saga")

        report = calculate_completeness(graph, "saga", "original")

        assert report.percentage == 0.0
        assert report.total_count == 0
        assert report.missing_issues == []

    def test_half_owned_with_fractional_issue(self, saga_graph: CollectionGraph) -> None:
        """Owning 1 and 2 of [1, 1.5, 2, 3] is 50% with 1.5 and 3 missing."""
        _own(saga_graph, "1")
        _own(saga_graph, "2")

        report = calculate_completeness(saga_graph, "saga", "original")

        assert report.owned_count == 2
        assert report.total_count == 4
        assert report.percentage == 50.0
        assert report.missing_issues == ["1.5", "3"]

    def test_read_counts_as_held(self, saga_graph: CollectionGraph) -> None:
        saga_graph.set_ownership(IssueKey("saga", 1, "3"), "original", OwnershipState.READ)

        report = calculate_completeness(saga_graph, "saga", "original")

        assert report.owned_count == 1

    @pytest.mark.parametrize("state", [OwnershipState.WISHLIST, OwnershipState.SOLD])
    def test_unheld_states_do_not_count(
        self, saga_graph: CollectionGraph, clock: ManualClock, state: OwnershipState
    ) -> None:
        """Wishlisted and disposed copies are gaps."""
        key = IssueKey("saga", 1, "1")
        saga_graph.set_ownership(key, "original", OwnershipState.OWNED)
        clock.advance(60)
        saga_graph.set_ownership(key, "original", state)

        report = calculate_completeness(saga_graph, "saga", "original")

        assert report.owned_count == 0
        assert report.missing_issues == ["1", "1.5", "2", "3"]

    def test_other_edition_line_does_not_count(self, saga_graph: CollectionGraph) -> None:
        """A facsimile does not fill a gap in the original run."""
        _own(saga_graph, "1", line="facsimile")

        assert calculate_completeness(saga_graph, "saga", "original").owned_count == 0
        assert calculate_completeness(saga_graph, "saga", "facsimile").owned_count == 1

    def test_any_line_when_unspecified(self, saga_graph: CollectionGraph) -> None:
        """Without an edition line, a copy on any line counts once."""
        _own(saga_graph, "1", line="facsimile")
        _own(saga_graph, "1", line="original")
        _own(saga_graph, "2", line="reprint")

        report = calculate_completeness(saga_graph, "saga")

        assert report.owned_count == 2
        assert report.missing_issues == ["1.5", "3"]

    def test_missing_by_volume(self, saga_graph: CollectionGraph) -> None:
        """Gaps are grouped per volume, each in numeric order."""
        saga_graph.add_issue("saga", 2, "2")
        saga_graph.add_issue("saga", 2, "1")
        _own(saga_graph, "1")

        report = calculate_completeness(saga_graph, "saga", "original")

        assert report.missing_by_volume == {1: ["1.5", "2", "3"], 2: ["1", "2"]}
        assert report.missing_issues == ["1.5", "2", "3", "1", "2"]

    def test_reboot_repeats_numbers_across_volumes(self, saga_graph: CollectionGraph) -> None:
        """Both #1s missing: the flat list repeats "1", the per-volume map does not."""
        saga_graph.add_issue("saga", 2, "1")

        report = calculate_completeness(saga_graph, "saga")

        assert report.missing_issues.count("1") == 2
        assert report.missing_by_volume[1][0] == "1"
        assert report.missing_by_volume[2] == ["1"]
        assert report.total_count == 5

    def test_single_volume(self, saga_graph: CollectionGraph) -> None:
        saga_graph.add_issue("saga", 2, "1")
        _own(saga_graph, "1", volume=2)

        report = calculate_completeness(saga_graph, "saga", "original", volume=2)

        assert report.percentage == 100.0
        assert report.is_complete

    def test_unknown_series(self, graph: CollectionGraph) -> None:
        with pytest.raises(CatalogLookupError):
            calculate_completeness(graph, "nope", "original")


class TestEditionLineBreakdown:
    def test_one_report_per_line(self, saga_graph: CollectionGraph) -> None:
        saga_graph.add_edition(Edition(issue_key=IssueKey("saga", 1, "1"), edition_line="original"))
        _own(saga_graph, "1")
        _own(saga_graph, "2", line="facsimile")

        reports = edition_line_breakdown(saga_graph, "saga")

        assert set(reports) == {"facsimile", "original"}
        assert reports["original"].missing_issues == ["1.5", "2", "3"]
        assert reports["facsimile"].percentage == 25.0
