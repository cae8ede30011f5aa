"""Tests for the season lifecycle: creation, joining, activation, timeouts, termination."""
from datetime import timedelta

import pytest
from sqlalchemy import select

from turnchain.config import Settings
from turnchain.game import constants as C
from turnchain.game.turn_engine import PushMode
from turnchain.main import create_runtime
from turnchain.models.game import Game
from turnchain.models.scheduled_job import ScheduledJob
from turnchain.models.season import Season
from turnchain.models.turn import Turn

from conftest import ADMIN, SEASON_POLICY, START, fetch_all, fetch_one, season_games, start_season


# -- 1. test_create_season_opens_and_arms_deadline -----------------------------

@pytest.mark.asyncio
async def test_create_season_opens_and_arms_deadline(service, session_factory):
    result = await service.create_season("p1", SEASON_POLICY)
    assert result.success
    assert result.key == "season_created"
    assert result.data["status"] == C.SEASON_OPEN

    jobs = await fetch_all(
        session_factory,
        select(ScheduledJob).where(ScheduledJob.target_id == result.data["season_id"]),
    )
    assert [(j.job_type, j.status, j.due_at) for j in jobs] == [
        (C.JOB_OPEN_DURATION_TIMEOUT, C.JOB_PENDING, START + timedelta(days=1)),
    ]


# -- 2. test_create_season_rejects_invalid_policy ------------------------------

@pytest.mark.asyncio
async def test_create_season_rejects_invalid_policy(service, session_factory):
    result = await service.create_season("p1", {"min_players": 8, "max_players": 4})
    assert not result.success
    assert result.key == "invalid_policy"
    assert await fetch_all(session_factory, select(Season)) == []


# -- 3. test_join_rules --------------------------------------------------------

@pytest.mark.asyncio
async def test_join_rules(service):
    season_id = (await service.create_season("p1", SEASON_POLICY)).data["season_id"]

    assert (await service.join_season(season_id, "p1")).success
    again = await service.join_season(season_id, "p1")
    assert not again.success
    assert again.key == "already_joined"

    unknown = await service.join_season("missing", "p2")
    assert unknown.key == "season_not_found"

    assert (await service.join_season(season_id, "p2")).data["activated"] is False
    last = await service.join_season(season_id, "p3")
    assert last.success
    assert last.data["activated"] is True

    late = await service.join_season(season_id, "p4")
    assert not late.success
    assert late.key == "season_not_open"


# -- 4. test_activation_at_max_players -----------------------------------------

@pytest.mark.asyncio
async def test_activation_at_max_players(service, session_factory, notifier):
    season_id = await start_season(service, players=("p1", "p2", "p3"))

    season = await fetch_one(session_factory, Season, season_id)
    assert season.status == C.SEASON_ACTIVE
    assert season.activated_at == START

    games = await season_games(session_factory, season_id)
    assert [g.creator_id for g, _ in games] == ["p1", "p2", "p3"]
    for game, turns in games:
        assert game.status == C.GAME_ACTIVE
        first, second = turns
        assert (first.turn_number, first.status, first.turn_type) == (1, C.TURN_PENDING, C.TURN_WRITING)
        assert first.player_id == game.creator_id
        assert (second.turn_number, second.status, second.turn_type) == (2, C.TURN_OFFERED, C.TURN_DRAWING)
        assert second.player_id != game.creator_id

    # Fewest turns first, then lowest id
    assert [turns[1].player_id for _, turns in games] == ["p2", "p1", "p1"]

    [deadline] = await fetch_all(
        session_factory, select(ScheduledJob).where(ScheduledJob.target_id == season_id),
    )
    assert deadline.status == C.JOB_CANCELLED
    for pid in ("p1", "p2", "p3"):
        assert C.MSG_SEASON_ACTIVATED in notifier.keys_for(pid)
        assert C.MSG_TURN_STARTED in notifier.keys_for(pid)


# -- 5. test_open_duration_timeout_activates -----------------------------------

@pytest.mark.asyncio
async def test_open_duration_timeout_activates(runtime, service, session_factory, clock):
    season_id = (await service.create_season("p1", {**SEASON_POLICY, "max_players": 5})).data["season_id"]
    await service.join_season(season_id, "p1")
    await service.join_season(season_id, "p2")

    clock.advance(hours=23)
    assert await runtime.scheduler.fire_due() == 0
    clock.advance(hours=1, minutes=1)
    assert await runtime.scheduler.fire_due() == 1

    assert (await fetch_one(session_factory, Season, season_id)).status == C.SEASON_ACTIVE
    games = await season_games(session_factory, season_id)
    assert len(games) == 2
    assert all(len(turns) == 2 for _, turns in games)


# -- 6. test_open_duration_timeout_cancels -------------------------------------

@pytest.mark.asyncio
async def test_open_duration_timeout_cancels(service, session_factory, notifier):
    season_id = (await service.create_season("p1", {**SEASON_POLICY, "min_players": 3})).data["season_id"]
    await service.join_season(season_id, "p1")
    await service.join_season(season_id, "p2")

    result = await service.handle_open_duration_timeout(season_id)
    assert result.success and result.key == "season_cancelled"
    assert (await fetch_one(session_factory, Season, season_id)).status == C.SEASON_CANCELLED
    assert await fetch_all(session_factory, select(Game).where(Game.season_id == season_id)) == []
    assert C.MSG_SEASON_CANCELLED in notifier.keys_for("p2")

    pending = await fetch_all(
        session_factory, select(ScheduledJob).where(ScheduledJob.status == C.JOB_PENDING),
    )
    assert pending == []

    repeat = await service.handle_open_duration_timeout(season_id)
    assert repeat.success and repeat.key == "no_change"


# -- 7. test_terminate_season_releases_players ---------------------------------

@pytest.mark.asyncio
async def test_terminate_season_releases_players(service, session_factory, notifier):
    season_id = await start_season(service)
    (g1, g1_turns), _, _ = await season_games(session_factory, season_id)
    assert (await service.submit_turn(g1_turns[0].id, "p1", "It was a dark and stormy night")).success

    result = await service.terminate_season(season_id, ADMIN)
    assert result.success
    assert result.data["status"] == C.SEASON_TERMINATED

    for game, turns in await season_games(session_factory, season_id):
        assert game.status == C.GAME_TERMINATED
    still_pending = await fetch_all(
        session_factory, select(Turn).where(Turn.status == C.TURN_PENDING),
    )
    assert still_pending == []
    jobs = await fetch_all(
        session_factory, select(ScheduledJob).where(ScheduledJob.status == C.JOB_PENDING),
    )
    assert jobs == []
    for pid in ("p1", "p2", "p3"):
        assert C.MSG_SEASON_TERMINATED in notifier.keys_for(pid)

    # Released players can start something new
    assert (await service.create_on_demand_game("p2")).success

    again = await service.terminate_season(season_id, ADMIN)
    assert not again.success
    assert again.key == "season_not_active"


# -- 8. test_push_rule_from_settings -------------------------------------------

def test_push_rule_from_settings(notifier, moderation):
    settings = Settings(PUSH_RULE=C.PUSH_RULE_TYPE_BALANCE)
    runtime = create_runtime(notifier=notifier, moderation=moderation, settings=settings)
    assert runtime.engine.push_mode.rule == C.PUSH_RULE_TYPE_BALANCE
    with pytest.raises(ValueError):
        PushMode("random")
