"""Transmutation rules: initial grade -> reported grade.

Each revision is a rule callable ``rule(initial_grade, grade_level) -> float``
registered under a revision id. The DepEd tables below are band tables, but
any monotonic callable can be registered with ``register_rule``.
"""

import bisect
import logging
from typing import Callable, Dict, List, Optional, Tuple

from utils.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_REVISION = "2015"


class BandTable:
    """Lower-bound band lookup.

    ``bands`` is a list of (minimum initial grade, transmuted grade). An initial
    grade maps to the band with the largest minimum not above it, so there are
    no gaps between bands and the output never decreases as input increases.
    """

    def __init__(self, label: str, bands: List[Tuple[float, float]]):
        if not bands:
            raise ValueError("A transmutation table needs at least one band")
        ordered = sorted(bands)
        grades = [g for _, g in ordered]
        if grades != sorted(grades):
            raise ValueError(f"{label}: transmuted grades must not decrease")
        self.label = label
        self._mins = [m for m, _ in ordered]
        self._grades = grades

    def __call__(self, initial_grade: float, grade_level: str = "") -> float:
        idx = bisect.bisect_right(self._mins, initial_grade) - 1
        if idx < 0:
            return self._grades[0]
        return self._grades[idx]

    def __repr__(self):
        return f"<BandTable {self.label} ({len(self._mins)} bands)>"


DEPED_2015 = BandTable(
    "DepEd Order No. 8, s. 2015",
    [
        (0, 75), (2.40, 76), (6.40, 77), (10.40, 78), (14.40, 79),
        (18.40, 80), (22.40, 81), (26.40, 82), (30.40, 83), (34.40, 84),
        (38.40, 85), (42.40, 86), (46.40, 87), (50.40, 88), (54.40, 89),
        (58.40, 90), (63.20, 91), (67.20, 92), (71.20, 93), (75.20, 94),
        (79.20, 95), (83.20, 96), (87.20, 97), (91.20, 98), (95.20, 99),
        (98.40, 100),
    ],
)


def _do8_bands():
    # 0-59.99 in 4-point steps -> 60..74, 60-99.99 in 1.6-point steps -> 75..99
    bands = [(round(4.0 * i, 2), 60 + i) for i in range(15)]
    bands += [(round(60.0 + 1.6 * i, 2), 75 + i) for i in range(25)]
    bands.append((100.0, 100))
    return bands


DEPED_DO8_FLOOR60 = BandTable("DepEd Order No. 8, s. 2015 (60-floor table)", _do8_bands())

DEPED_2020 = BandTable(
    "DepEd Order No. 31, s. 2020 (COVID-19 Grading)",
    [(0, 75), (75, 80), (80, 85), (85, 90), (90, 100)],
)

DEPED_2025_SHS = BandTable(
    "DepEd Order 2025 (Senior High School)",
    [(0, 75), (75, 80), (81, 85), (86, 90), (91, 95), (96, 100)],
)

SIGNED_TABLE = BandTable(
    "Signed Transmutation Table",
    [(0, 75)] + [(25.5 + 3 * i, 76 + i) for i in range(25)],
)

TRANSMUTATION_RULES: Dict[str, Callable[[float, str], float]] = {
    "2015": DEPED_2015,
    "do8": DEPED_DO8_FLOOR60,
    "2020": DEPED_2020,
    "2025": DEPED_2025_SHS,
    "signed": SIGNED_TABLE,
}


def register_rule(revision: str, rule: Callable[[float, str], float]):
    """Install (or replace) the rule for a revision id."""
    if not callable(rule):
        raise ValidationError("Transmutation rule must be callable")
    logger.info(f"Registering transmutation rule {revision}: {rule!r}")
    TRANSMUTATION_RULES[str(revision)] = rule


def get_rule(revision: str) -> Callable[[float, str], float]:
    try:
        return TRANSMUTATION_RULES[str(revision)]
    except KeyError:
        raise ValidationError(
            f"Unknown transmutation revision: {revision!r}",
            {"available": sorted(TRANSMUTATION_RULES)},
        )


def rule_label(revision: str) -> str:
    rule = get_rule(revision)
    return getattr(rule, "label", str(revision))


def resolve_revision(
    grade_level: str = "",
    school_year: Optional[int] = None,
    revision: Optional[str] = None,
    default: str = DEFAULT_REVISION,
) -> str:
    """Pick the revision id for a section.

    Priority: explicit revision, then senior high (grades 11-12) from school
    year 2025 on, then school year 2020, then the configured default.
    """
    if revision:
        get_rule(revision)
        return str(revision)
    if str(grade_level).strip() in ("11", "12") and school_year and school_year >= 2025:
        return "2025"
    if school_year == 2020:
        return "2020"
    return default


def transmute(initial_grade: float, grade_level: str = "", revision: str = DEFAULT_REVISION) -> float:
    """Map an initial grade to the official grade for ``revision``.

    The input is clamped to [0, 100] before lookup. An initial grade of 0
    means nothing was graded and stays 0 under every revision.
    """
    try:
        value = float(initial_grade)
    except (TypeError, ValueError):
        raise ValidationError(f"Initial grade must be a number (got {initial_grade!r})")
    if value != value:
        raise ValidationError("Initial grade must not be NaN")
    rule = get_rule(revision)
    value = min(100.0, max(0.0, value))
    if value <= 0:
        return 0.0
    return float(rule(value, str(grade_level or "")))
