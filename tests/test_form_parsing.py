import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms import FormParsing, MAX_DURATION_SEC, MAX_REPS, MAX_WEIGHT_KG


def test_blank_values_mean_no_change():
    assert FormParsing.parse_nullable_int("", MAX_REPS) is None
    assert FormParsing.parse_nullable_int("   ", MAX_REPS) is None
    assert FormParsing.parse_nullable_number(None, MAX_WEIGHT_KG) is None


def test_valid_values_are_converted():
    assert FormParsing.parse_nullable_int(" 8 ", MAX_REPS) == 8
    assert FormParsing.parse_nullable_int(12.0, MAX_REPS) == 12
    assert FormParsing.parse_nullable_number("62.5", MAX_WEIGHT_KG) == 62.5
    assert FormParsing.parse_nullable_int("0", MAX_REPS) == 0


@pytest.mark.parametrize("value", ["abc", "8.5", "inf", "nan", True])
def test_invalid_integers(value):
    with pytest.raises(ValueError, match="Invalid number"):
        FormParsing.parse_nullable_int(value, MAX_REPS)


def test_non_finite_weight_is_invalid():
    with pytest.raises(ValueError, match="Invalid number"):
        FormParsing.parse_nullable_number("inf", MAX_WEIGHT_KG)


def test_negative_and_too_large():
    with pytest.raises(ValueError, match="Negative not allowed"):
        FormParsing.parse_nullable_int("-1", MAX_REPS)
    with pytest.raises(ValueError, match="Value too large"):
        FormParsing.parse_nullable_int(str(MAX_REPS + 1), MAX_REPS)
    with pytest.raises(ValueError, match="Value too large"):
        FormParsing.parse_nullable_int(MAX_DURATION_SEC + 1, MAX_DURATION_SEC)
    with pytest.raises(ValueError, match="Value too large"):
        FormParsing.parse_nullable_number("2000.5", MAX_WEIGHT_KG)


def test_parse_set_values():
    assert FormParsing.parse_set_values("8", "60", "") == (8, 60.0, None)
    assert FormParsing.parse_set_values(None, None, "45") == (None, None, 45)
    assert MAX_DURATION_SEC == 14400
