"""Policy input validation and timing lookups.

Season and on-demand policies arrive as plain dicts (from a setup wizard,
a draft or a config file).  Missing keys fall back to the configured
defaults; the validated values are copied into a new :class:`Policy` row so
every season or on-demand game owns its own snapshot.
"""
from datetime import timedelta
from typing import Optional

import pydantic
from pydantic import BaseModel, Field, field_validator, model_validator

from turnchain.config import settings
from turnchain.game import constants as C
from turnchain.game.durations import parse_duration, parse_turn_pattern
from turnchain.game.errors import ValidationError
from turnchain.models.season import Policy


def _positive_duration(value: str) -> str:
    try:
        delta = parse_duration(value)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc
    if delta <= timedelta(0):
        raise ValueError("must be longer than zero")
    return value.strip()


class _PolicyInput(BaseModel):
    model_config = {"extra": "forbid", "validate_default": True}

    turn_pattern: str
    claim_timeout: str
    writing_timeout: str
    writing_warning: str
    drawing_timeout: str
    drawing_warning: str
    max_plays: int = Field(ge=1, le=100)
    return_gap: int = Field(ge=0, le=100)

    @field_validator("turn_pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            return ",".join(p.lower() for p in parse_turn_pattern(value))
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc

    @field_validator(
        "claim_timeout", "writing_timeout", "writing_warning",
        "drawing_timeout", "drawing_warning",
    )
    @classmethod
    def _check_duration(cls, value: str) -> str:
        return _positive_duration(value)

    @model_validator(mode="after")
    def _check_warnings(self):
        for kind in ("writing", "drawing"):
            warning = parse_duration(getattr(self, f"{kind}_warning"))
            timeout = parse_duration(getattr(self, f"{kind}_timeout"))
            if warning >= timeout:
                raise ValueError(f"{kind}_warning must be shorter than {kind}_timeout")
        return self


class SeasonPolicyInput(_PolicyInput):
    turn_pattern: str = Field(default_factory=lambda: settings.SEASON_TURN_PATTERN)
    claim_timeout: str = Field(default_factory=lambda: settings.SEASON_CLAIM_TIMEOUT)
    writing_timeout: str = Field(default_factory=lambda: settings.SEASON_WRITING_TIMEOUT)
    writing_warning: str = Field(default_factory=lambda: settings.SEASON_WRITING_WARNING)
    drawing_timeout: str = Field(default_factory=lambda: settings.SEASON_DRAWING_TIMEOUT)
    drawing_warning: str = Field(default_factory=lambda: settings.SEASON_DRAWING_WARNING)
    open_duration: str = Field(default_factory=lambda: settings.SEASON_OPEN_DURATION)
    min_players: int = Field(default_factory=lambda: settings.SEASON_MIN_PLAYERS, ge=1, le=100)
    max_players: int = Field(default_factory=lambda: settings.SEASON_MAX_PLAYERS, ge=1, le=100)
    max_plays: int = Field(default=1, ge=1, le=100)
    return_gap: int = Field(default=0, ge=0, le=100)

    @field_validator("open_duration")
    @classmethod
    def _check_open_duration(cls, value: str) -> str:
        return _positive_duration(value)

    @model_validator(mode="after")
    def _check_players(self):
        if self.max_players < self.min_players:
            raise ValueError("max_players cannot be less than min_players")
        return self


class OnDemandPolicyInput(_PolicyInput):
    turn_pattern: str = Field(default_factory=lambda: settings.ONDEMAND_TURN_PATTERN)
    claim_timeout: str = Field(default_factory=lambda: settings.ONDEMAND_CLAIM_TIMEOUT)
    writing_timeout: str = Field(default_factory=lambda: settings.ONDEMAND_WRITING_TIMEOUT)
    writing_warning: str = Field(default_factory=lambda: settings.ONDEMAND_WRITING_WARNING)
    drawing_timeout: str = Field(default_factory=lambda: settings.ONDEMAND_DRAWING_TIMEOUT)
    drawing_warning: str = Field(default_factory=lambda: settings.ONDEMAND_DRAWING_WARNING)
    stale_timeout: str = Field(default_factory=lambda: settings.ONDEMAND_STALE_TIMEOUT)
    min_turns: int = Field(default_factory=lambda: settings.ONDEMAND_MIN_TURNS, ge=1, le=1000)
    max_turns: Optional[int] = Field(default_factory=lambda: settings.ONDEMAND_MAX_TURNS, ge=1, le=1000)
    max_plays: int = Field(default_factory=lambda: settings.ONDEMAND_MAX_PLAYS, ge=1, le=100)
    return_gap: int = Field(default_factory=lambda: settings.ONDEMAND_RETURN_GAP, ge=0, le=100)

    @field_validator("stale_timeout")
    @classmethod
    def _check_stale(cls, value: str) -> str:
        return _positive_duration(value)

    @model_validator(mode="after")
    def _check_turns(self):
        if self.max_turns is not None and self.max_turns < self.min_turns:
            raise ValueError("max_turns cannot be less than min_turns")
        return self


def _build(input_cls, data: dict | None) -> Policy:
    try:
        parsed = input_cls(**(data or {}))
    except pydantic.ValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError(
            "Invalid policy: " + "; ".join(f"{e['field']}: {e['error']}" for e in errors),
            key="invalid_policy",
            data={"errors": errors},
        ) from exc
    return Policy(**parsed.model_dump())


def build_season_policy(data: dict | None = None) -> Policy:
    """Validate season policy input and return an unsaved Policy snapshot."""
    return _build(SeasonPolicyInput, data)


def build_on_demand_policy(data: dict | None = None) -> Policy:
    """Validate on-demand policy input and return an unsaved Policy snapshot."""
    return _build(OnDemandPolicyInput, data)


# ---------------------------------------------------------------------------
# Lookups on a stored snapshot
# ---------------------------------------------------------------------------


def turn_pattern(policy: Policy) -> list[str]:
    return parse_turn_pattern(policy.turn_pattern)


def claim_timeout(policy: Policy) -> timedelta:
    return parse_duration(policy.claim_timeout)


def submit_timeout(policy: Policy, turn_type: str) -> timedelta:
    if turn_type == C.TURN_DRAWING:
        return parse_duration(policy.drawing_timeout)
    return parse_duration(policy.writing_timeout)


def submit_warning(policy: Policy, turn_type: str) -> timedelta:
    """Lead time before the submit deadline at which the holder is reminded."""
    if turn_type == C.TURN_DRAWING:
        return parse_duration(policy.drawing_warning)
    return parse_duration(policy.writing_warning)
