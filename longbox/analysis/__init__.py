from longbox.analysis.completeness import (
    calculate_completeness,
    completion_percentage,
    edition_line_breakdown,
)

__all__ = [
    "calculate_completeness",
    "completion_percentage",
    "edition_line_breakdown",
]
