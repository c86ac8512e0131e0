from dataclasses import dataclass, field


@dataclass
class CompletenessReport:
    """
    How much of a series (or one volume of it) a user holds.

    edition_line None means any edition line counts. missing_issues is in
    ascending (volume, issue number) order and holds bare issue numbers, so
    with volume None a rebooted series can list the same number twice (v1 #1
    and v2 #1). missing_by_volume carries the same entries keyed by volume;
    read it whenever the report spans more than one volume.
    """

    series_key: str
    edition_line: str | None
    volume: int | None
    owned_count: int = 0
    total_count: int = 0
    percentage: float = 0.0
    missing_issues: list[str] = field(default_factory=list)
    missing_by_volume: dict[int, list[str]] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.total_count > 0 and self.owned_count == self.total_count
