"""Tests for the read-only season and game queries."""
import pytest

from turnchain.game import constants as C

from conftest import game_turns, season_games, start_season


# -- 1. test_get_season --------------------------------------------------------

@pytest.mark.asyncio
async def test_get_season(service, session_factory):
    season_id = await start_season(service)
    games = await season_games(session_factory, season_id)

    found = await service.get_season(season_id)
    assert found.success and found.key == "season_found"
    assert found.data["status"] == C.SEASON_ACTIVE
    assert found.data["player_ids"] == ["p1", "p2", "p3"]
    assert found.data["player_count"] == 3
    assert sorted(found.data["game_ids"]) == sorted(g.id for g, _ in games)
    assert found.data["policy"]["claim_timeout"] == "3h"
    assert found.data["policy"]["max_players"] == 3

    missing = await service.get_season("no-such-season")
    assert not missing.success
    assert missing.key == "season_not_found"


# -- 2. test_get_game_status ---------------------------------------------------

@pytest.mark.asyncio
async def test_get_game_status(service, session_factory):
    season_id = await start_season(service, players=("p1", "p2"))
    (g1, g1_turns), _ = await season_games(session_factory, season_id)

    status = await service.get_game_status(g1.id)
    assert status.success and status.key == "game_status"
    assert [t["turn_number"] for t in status.data["turns"]] == [1, 2]
    assert status.data["statistics"] == {
        "total_turns": 2,
        "completed_turns": 0,
        "skipped_turns": 0,
        "flagged_turns": 0,
        "open_turns": 2,
        "completion_percentage": 0,
    }
    assert status.data["is_finished"] is False

    assert (await service.submit_turn(g1_turns[0].id, "p1", "A train with no tracks")).success
    stats = (await service.get_game_status(g1.id)).data["statistics"]
    assert (stats["completed_turns"], stats["open_turns"], stats["completion_percentage"]) == (1, 1, 50)

    missing = await service.get_game_status("no-such-game")
    assert missing.key == "game_not_found"


# -- 3. test_list_season_games -------------------------------------------------

@pytest.mark.asyncio
async def test_list_season_games(service):
    season_id = await start_season(service)

    listed = await service.list_season_games(season_id)
    assert listed.success
    assert len(listed.data["games"]) == 3
    assert {g["status"] for g in listed.data["games"]} == {C.GAME_ACTIVE}

    done = await service.list_season_games(season_id, status=C.GAME_COMPLETED)
    assert done.data["games"] == []

    assert (await service.list_season_games("nope")).key == "season_not_found"


# -- 4. test_games_for_player --------------------------------------------------

@pytest.mark.asyncio
async def test_games_for_player(service, session_factory):
    game_id = (await service.create_on_demand_game("c1")).data["game_id"]
    [first] = await game_turns(session_factory, game_id)

    mine = (await service.list_games_for_player("c1")).data
    assert [g["game_id"] for g in mine["active"]] == [game_id]
    assert mine["available"] == []

    assert (await service.submit_turn(first.id, "c1", "The bees went on strike")).success
    assert (await service.list_games_for_player("p2")).data["available"] == [game_id]
    # c1 already played this chain
    assert (await service.list_games_for_player("c1")).data == {
        "player_id": "c1", "active": [], "available": [],
    }

    assert (await service.join_on_demand_game("p2")).success
    joined = (await service.list_games_for_player("p2")).data
    assert [g["game_id"] for g in joined["active"]] == [game_id]
    assert joined["available"] == []


# -- 5. test_list_on_demand_games ----------------------------------------------

@pytest.mark.asyncio
async def test_list_on_demand_games(service, clock):
    older = (await service.create_on_demand_game("c1")).data["game_id"]
    clock.advance(minutes=1)
    newer = (await service.create_on_demand_game("c2")).data["game_id"]
    await start_season(service, players=("p1", "p2"))

    listed = await service.list_on_demand_games()
    assert [g["game_id"] for g in listed.data["games"]] == [newer, older]

    assert (await service.list_on_demand_games(status=C.GAME_ACTIVE)).data["games"] != []
    assert (await service.list_on_demand_games(status=C.GAME_TERMINATED)).data["games"] == []
