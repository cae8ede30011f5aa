"""Tests for on-demand games: creation, pull joins, completion and staleness."""
import logging
from datetime import timedelta

import pytest
from sqlalchemy import select

from turnchain.game import constants as C
from turnchain.models.game import Game
from turnchain.models.scheduled_job import ScheduledJob

from conftest import START, fetch_all, fetch_one, game_turns


async def _jobs(session_factory, status=C.JOB_PENDING) -> list[tuple[str, str, object]]:
    rows = await fetch_all(
        session_factory,
        select(ScheduledJob).where(ScheduledJob.status == status).order_by(ScheduledJob.due_at),
    )
    return [(j.job_type, j.target_id, j.due_at) for j in rows]


# -- 1. test_create_on_demand_game ---------------------------------------------

@pytest.mark.asyncio
async def test_create_on_demand_game(service, session_factory, notifier):
    result = await service.create_on_demand_game("c1")
    assert result.success and result.key == "game_created"
    game_id = result.data["game_id"]
    assert result.data["season_id"] is None

    [first] = await game_turns(session_factory, game_id)
    assert (first.turn_number, first.turn_type, first.status, first.player_id) == (
        1, C.TURN_WRITING, C.TURN_PENDING, "c1",
    )
    assert await _jobs(session_factory) == [
        (C.JOB_SUBMIT_WARNING, first.id, START + timedelta(minutes=4)),
        (C.JOB_SUBMIT_TIMEOUT, first.id, START + timedelta(minutes=5)),
        (C.JOB_STALE_TIMEOUT, game_id, START + timedelta(days=3)),
    ]
    assert notifier.keys_for("c1") == [C.MSG_TURN_STARTED]

    busy = await service.create_on_demand_game("c1")
    assert not busy.success
    assert busy.key == "already_has_pending_turn"
    assert len(await fetch_all(session_factory, select(Game))) == 1

    invalid = await service.create_on_demand_game("c2", {"min_turns": 0})
    assert invalid.key == "invalid_policy"


# -- 2. test_join_on_demand_game -----------------------------------------------

@pytest.mark.asyncio
async def test_join_on_demand_game(service, session_factory):
    game_id = (await service.create_on_demand_game("c1")).data["game_id"]
    [first] = await game_turns(session_factory, game_id)
    assert (await service.submit_turn(first.id, "c1", "A cat opens a bakery")).success

    _, opened = await game_turns(session_factory, game_id)
    assert (opened.status, opened.player_id, opened.turn_type) == (C.TURN_OFFERED, None, C.TURN_DRAWING)

    joined = await service.join_on_demand_game("p2")
    assert joined.success and joined.key == "game_joined"
    assert joined.data["turn_id"] == opened.id
    assert joined.data["status"] == C.TURN_PENDING
    assert joined.data["player_id"] == "p2"

    assert (await service.join_on_demand_game("p2")).key == "already_has_pending_turn"
    # The only open turn is taken
    assert (await service.join_on_demand_game("c1")).key == "no_game_available"
    assert (await service.join_on_demand_game("p3")).key == "no_game_available"


# -- 3. test_pull_prefers_game_closest_to_stale --------------------------------

@pytest.mark.asyncio
async def test_pull_prefers_game_closest_to_stale(service, session_factory, clock):
    quick = (await service.create_on_demand_game("c1", {"stale_timeout": "1h"})).data["game_id"]
    slow = (await service.create_on_demand_game("c2")).data["game_id"]

    [slow_first] = await game_turns(session_factory, slow)
    assert (await service.submit_turn(slow_first.id, "c2", "The tide forgot to come back")).success
    clock.advance(minutes=2)
    [quick_first] = await game_turns(session_factory, quick)
    assert (await service.submit_turn(quick_first.id, "c1", "A clock ran backwards")).success

    # quick was touched last but goes stale first
    assert (await service.join_on_demand_game("p3")).data["game_id"] == quick
    assert (await service.join_on_demand_game("p4")).data["game_id"] == slow


# -- 4. test_max_turns_completes_game ------------------------------------------

@pytest.mark.asyncio
async def test_max_turns_completes_game(service, session_factory, notifier):
    game_id = (await service.create_on_demand_game("c1", {"max_turns": 2, "min_turns": 1})).data["game_id"]
    [first] = await game_turns(session_factory, game_id)
    assert (await service.submit_turn(first.id, "c1", "Two ducks")).success

    joined = await service.join_on_demand_game("p2")
    done = await service.submit_turn(joined.data["turn_id"], "p2", "https://img.example/ducks.png", "image")
    assert done.success

    assert (await fetch_one(session_factory, Game, game_id)).status == C.GAME_COMPLETED
    assert len(await game_turns(session_factory, game_id)) == 2
    assert await _jobs(session_factory) == []
    assert C.MSG_GAME_COMPLETED in notifier.keys_for("c1")
    assert C.MSG_GAME_COMPLETED in notifier.keys_for("p2")


# -- 5. test_stale_timeout_completes_idle_game ---------------------------------

@pytest.mark.asyncio
async def test_stale_timeout_completes_idle_game(runtime, service, session_factory, clock):
    policy = {"min_turns": 1, "stale_timeout": "1h"}
    game_id = (await service.create_on_demand_game("c1", policy)).data["game_id"]
    [first] = await game_turns(session_factory, game_id)
    assert (await service.submit_turn(first.id, "c1", "Fog with opinions")).success

    clock.advance(minutes=61)
    assert await runtime.scheduler.fire_due() == 1
    game = await fetch_one(session_factory, Game, game_id)
    assert game.status == C.GAME_COMPLETED
    assert game.completed_at == START + timedelta(minutes=61)


# -- 6. test_stale_timeout_rearms_below_min_turns ------------------------------

@pytest.mark.asyncio
async def test_stale_timeout_rearms_below_min_turns(runtime, service, session_factory, clock):
    policy = {"min_turns": 3, "stale_timeout": "1h"}
    game_id = (await service.create_on_demand_game("c1", policy)).data["game_id"]
    [first] = await game_turns(session_factory, game_id)
    assert (await service.submit_turn(first.id, "c1", "A very short story")).success

    clock.advance(minutes=61)
    assert await runtime.scheduler.fire_due() == 1
    assert (await fetch_one(session_factory, Game, game_id)).status == C.GAME_ACTIVE
    assert await _jobs(session_factory) == [
        (C.JOB_STALE_TIMEOUT, game_id, START + timedelta(minutes=121)),
    ]


# -- 7. test_submit_timeout_skips_and_reopens ----------------------------------

@pytest.mark.asyncio
async def test_submit_timeout_skips_and_reopens(runtime, service, session_factory, notifier, clock):
    game_id = (await service.create_on_demand_game("c1")).data["game_id"]

    clock.advance(minutes=4)
    assert await runtime.scheduler.fire_due() == 1
    warning = [data for pid, key, data in notifier.sent if key == C.MSG_SUBMIT_WARNING]
    assert [w["remaining"] for w in warning] == ["1m"]

    clock.advance(minutes=2)
    assert await runtime.scheduler.fire_due() == 1
    skipped, replacement = await game_turns(session_factory, game_id)
    assert (skipped.status, skipped.player_id) == (C.TURN_SKIPPED, "c1")
    assert (replacement.turn_number, replacement.turn_type, replacement.status, replacement.player_id) == (
        2, C.TURN_WRITING, C.TURN_OFFERED, None,
    )
    assert C.MSG_TURN_SKIPPED in notifier.keys_for("c1")

    # The skipped creator does not get their chain back
    assert (await service.join_on_demand_game("c1")).key == "no_game_available"
    joined = await service.join_on_demand_game("p2")
    assert joined.data["turn_id"] == replacement.id


# -- 8. test_open_turn_logged_with_selection_mode ------------------------------

@pytest.mark.asyncio
async def test_open_turn_logged_with_selection_mode(runtime, service, session_factory, caplog):
    assert runtime.engine.mode_for(Game(season_id=None)).name == "pull"
    game_id = (await service.create_on_demand_game("c1")).data["game_id"]
    [first] = await game_turns(session_factory, game_id)

    with caplog.at_level(logging.DEBUG, logger="turnchain.game.turn_engine"):
        assert (await service.submit_turn(first.id, "c1", "A violin that only plays at noon")).success
    assert f"Turn 2 of game {game_id} left open for pull selection" in caplog.text
