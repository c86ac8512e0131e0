"""
Gap and completeness analysis.

Reads the collection graph and reports, per series and edition line, how
many issues are held (OWNED or READ) and which are missing.
"""

from decimal import ROUND_HALF_UP, Decimal

from longbox.models.catalog import HELD_STATES
from longbox.models.completeness import CompletenessReport
from longbox.services.collection_graph import CollectionGraph

_TWO_PLACES = Decimal("0.01")


def completion_percentage(owned: int, total: int) -> float:
    """owned / total as a percentage rounded half-up to two places; 0.0 when total is 0."""
    if total <= 0:
        return 0.0
    pct = (Decimal(owned) * 100 / Decimal(total)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    return float(pct)


def calculate_completeness(
    graph: CollectionGraph,
    series_key: str,
    edition_line: str | None = None,
    volume: int | None = None,
) -> CompletenessReport:
    """
    Compute completeness and the ordered gap list for a series.

    Args:
        graph: Collection graph to read
        series_key: Series to analyze
        edition_line: Only ownership on this line counts; None accepts any line
        volume: Restrict to one volume; None covers every volume

    Returns:
        CompletenessReport with counts, percentage and missing issue numbers.
        Across several volumes the bare numbers can repeat; missing_by_volume
        keeps them apart.

    Raises:
        CatalogLookupError: If the series does not exist
    """
    issues = graph.list_issues(series_key, volume)
    held = {
        (record.issue_key, record.edition_line)
        for record in graph.ownership_for_series(series_key)
        if record.state in HELD_STATES
    }
    held_any_line = {key for key, _line in held}

    report = CompletenessReport(series_key=series_key, edition_line=edition_line, volume=volume)
    for issue in issues:
        if edition_line is None:
            owned = issue.key in held_any_line
        else:
            owned = (issue.key, edition_line) in held

        if owned:
            report.owned_count += 1
        else:
            report.missing_issues.append(issue.number)
            report.missing_by_volume.setdefault(issue.volume, []).append(issue.number)

    report.total_count = len(issues)
    report.percentage = completion_percentage(report.owned_count, report.total_count)
    return report


def edition_line_breakdown(
    graph: CollectionGraph,
    series_key: str,
    volume: int | None = None,
) -> dict[str, CompletenessReport]:
    """One completeness report per edition line known for the series."""
    return {
        line: calculate_completeness(graph, series_key, line, volume)
        for line in graph.edition_lines(series_key)
    }
