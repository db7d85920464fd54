import pytest

from utils.errors import ValidationError
from utils.transmutation import (
    TRANSMUTATION_RULES,
    BandTable,
    get_rule,
    register_rule,
    resolve_revision,
    rule_label,
    transmute,
)


@pytest.mark.parametrize(
    "initial, expected",
    [
        (0.01, 75),
        (1.0, 75),
        (2.4, 76),
        (55, 89),
        (58.4, 90),
        (60, 90),
        (63.2, 91),
        (83.19, 95),
        (83.2, 96),
        (87, 96),
        (93, 98),
        (98.39, 99),
        (98.4, 100),
        (100, 100),
    ],
)
def test_deped_2015_table(initial, expected):
    assert transmute(initial, "7", "2015") == expected


@pytest.mark.parametrize("initial, expected", [(0.01, 60), (3.99, 60), (4, 61), (60, 75), (61.6, 76), (87, 91)])
def test_floor_60_table(initial, expected):
    assert transmute(initial, "7", "do8") == expected


@pytest.mark.parametrize("revision", ["2015", "2020", "2025", "signed", "do8"])
def test_zero_initial_grade_stays_zero(revision):
    assert transmute(0, "7", revision) == 0


@pytest.mark.parametrize(
    "revision, initial, expected",
    [
        ("2020", 74.9, 75),
        ("2020", 80, 85),
        ("2020", 95, 100),
        ("2025", 80.5, 80),
        ("2025", 96, 100),
        ("signed", 25.4, 75),
        ("signed", 25.5, 76),
        ("signed", 100, 100),
    ],
)
def test_other_revisions(revision, initial, expected):
    assert transmute(initial, "11", revision) == expected


def test_input_is_clamped():
    assert transmute(-15, revision="2015") == transmute(0, revision="2015") == 0
    assert transmute(140, revision="2015") == 100


@pytest.mark.parametrize("revision", sorted(TRANSMUTATION_RULES))
def test_every_rule_is_non_decreasing(revision):
    previous = None
    for step in range(0, 10001):
        value = transmute(step / 100.0, "", revision)
        if previous is not None:
            assert value >= previous, f"{revision} decreases at {step / 100.0}"
        previous = value


def test_unknown_revision_is_rejected():
    with pytest.raises(ValidationError):
        transmute(80, revision="1999")
    with pytest.raises(ValidationError):
        get_rule("1999")


def test_register_rule_adds_a_revision():
    register_rule("pass-fail", BandTable("Pass/Fail", [(0, 70), (75, 90)]))
    try:
        assert transmute(74, revision="pass-fail") == 70
        assert transmute(80, revision="pass-fail") == 90
        assert rule_label("pass-fail") == "Pass/Fail"
    finally:
        TRANSMUTATION_RULES.pop("pass-fail", None)


def test_band_table_rejects_decreasing_grades():
    with pytest.raises(ValueError):
        BandTable("broken", [(0, 80), (50, 70)])


def test_resolve_revision():
    assert resolve_revision("7", 2023) == "2015"
    assert resolve_revision("7", 2020) == "2020"
    assert resolve_revision("11", 2025) == "2025"
    assert resolve_revision("7", 2025, default="signed") == "signed"
    assert resolve_revision("11", 2025, revision="2015") == "2015"
