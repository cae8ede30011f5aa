"""Tests for duration strings, turn patterns and policy validation."""
from datetime import timedelta

import pytest

from turnchain.game import constants as C
from turnchain.game.durations import format_duration, parse_duration, parse_turn_pattern
from turnchain.game.errors import ValidationError
from turnchain.game.policy import (
    build_on_demand_policy, build_season_policy, submit_timeout, submit_warning,
)


# -- 1. test_parse_duration_valid ----------------------------------------------

@pytest.mark.parametrize("text,expected", [
    ("3d", timedelta(days=3)),
    ("2d5m", timedelta(days=2, minutes=5)),
    ("1h30m", timedelta(hours=1, minutes=30)),
    ("45s", timedelta(seconds=45)),
    (" 10m ", timedelta(minutes=10)),
])
def test_parse_duration_valid(text, expected):
    assert parse_duration(text) == expected


# -- 2. test_parse_duration_invalid --------------------------------------------

@pytest.mark.parametrize("text", ["", "   ", "5", "1x", "1m2h", "1h1h", "h1", "-1d"])
def test_parse_duration_invalid(text):
    with pytest.raises(ValidationError) as exc:
        parse_duration(text)
    assert exc.value.key == "invalid_duration"


# -- 3. test_format_duration ---------------------------------------------------

def test_format_duration():
    assert format_duration(timedelta(days=1, hours=2, minutes=30)) == "1d2h30m"
    assert format_duration(timedelta(0)) == "0s"
    with pytest.raises(ValueError):
        format_duration(timedelta(seconds=-1))


# -- 4. test_parse_turn_pattern ------------------------------------------------

def test_parse_turn_pattern():
    assert parse_turn_pattern("writing,drawing") == [C.TURN_WRITING, C.TURN_DRAWING]
    assert parse_turn_pattern(" Writing , writing,DRAWING") == [
        C.TURN_WRITING, C.TURN_WRITING, C.TURN_DRAWING,
    ]
    with pytest.raises(ValidationError) as exc:
        parse_turn_pattern("writing,painting")
    assert exc.value.key == "invalid_turn_pattern"
    assert exc.value.data["position"] == 2


# -- 5. test_season_policy_defaults --------------------------------------------

def test_season_policy_defaults():
    policy = build_season_policy()
    assert policy.turn_pattern == "writing,drawing"
    assert policy.min_players == 6
    assert policy.max_players == 20
    assert policy.open_duration == "7d"
    assert policy.max_plays == 1
    assert submit_timeout(policy, C.TURN_DRAWING) == timedelta(days=1)
    assert submit_warning(policy, C.TURN_DRAWING) == timedelta(minutes=10)


# -- 6. test_season_policy_rejects_bad_input -----------------------------------

@pytest.mark.parametrize("data", [
    {"min_players": 5, "max_players": 3},
    {"min_players": 0},
    {"writing_timeout": "1m", "writing_warning": "5m"},
    {"claim_timeout": "soon"},
    {"turn_pattern": "writing,singing"},
    {"open_duration": "0s"},
    {"colour": "blue"},
])
def test_season_policy_rejects_bad_input(data):
    with pytest.raises(ValidationError) as exc:
        build_season_policy(data)
    assert exc.value.key == "invalid_policy"
    assert exc.value.data["errors"]


# -- 7. test_on_demand_policy --------------------------------------------------

def test_on_demand_policy():
    policy = build_on_demand_policy({"max_turns": 8, "min_turns": 4, "stale_timeout": "2d"})
    assert policy.max_turns == 8
    assert policy.min_turns == 4
    assert policy.stale_timeout == "2d"
    assert policy.open_duration is None
    assert policy.return_gap == 3

    with pytest.raises(ValidationError):
        build_on_demand_policy({"max_turns": 2, "min_turns": 4})
    with pytest.raises(ValidationError):
        # Season-only key
        build_on_demand_policy({"max_players": 4})
