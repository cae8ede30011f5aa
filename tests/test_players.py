"""Tests for player bans."""
import pytest
from sqlalchemy import select

from turnchain.game import constants as C
from turnchain.models.player import Player
from turnchain.models.turn import Turn

from conftest import ADMIN, SEASON_POLICY, START, fetch_all, fetch_one, season_games, start_season


# -- 1. test_ban_and_unban -----------------------------------------------------

@pytest.mark.asyncio
async def test_ban_and_unban(service, session_factory):
    unknown = await service.ban_player("ghost", ADMIN)
    assert not unknown.success
    assert unknown.key == "player_not_found"

    assert (await service.register_player("p1", "Pat")).success
    banned = await service.ban_player("p1", ADMIN, reason="spam")
    assert banned.success and banned.key == "ban_applied"
    assert banned.data["reason"] == "spam"
    assert (await fetch_one(session_factory, Player, "p1")).banned_at == START
    assert (await service.is_player_banned("p1")).data["banned"] is True

    twice = await service.ban_player("p1", ADMIN)
    assert not twice.success
    assert twice.key == "already_banned"

    lifted = await service.unban_player("p1", ADMIN)
    assert lifted.success and lifted.key == "ban_lifted"
    assert (await fetch_one(session_factory, Player, "p1")).banned_at is None
    assert (await service.is_player_banned("p1")).data["banned"] is False

    again = await service.unban_player("p1", ADMIN)
    assert not again.success
    assert again.key == "not_banned"


# -- 2. test_banned_player_cannot_start_or_join --------------------------------

@pytest.mark.asyncio
async def test_banned_player_cannot_start_or_join(service, session_factory):
    season_id = (await service.create_season("p1", SEASON_POLICY)).data["season_id"]
    game_id = (await service.create_on_demand_game("c1")).data["game_id"]
    [first] = await fetch_all(session_factory, select(Turn).where(Turn.game_id == game_id))
    assert (await service.submit_turn(first.id, "c1", "A kite pulls a house")).success

    assert (await service.register_player("bad")).success
    assert (await service.ban_player("bad", ADMIN)).success

    for result in (
        await service.create_season("bad", SEASON_POLICY),
        await service.join_season(season_id, "bad"),
        await service.create_on_demand_game("bad"),
        await service.join_on_demand_game("bad"),
    ):
        assert not result.success
        assert result.key == "player_banned"
        assert result.data["player_id"] == "bad"

    assert (await service.unban_player("bad", ADMIN)).success
    joined = await service.join_on_demand_game("bad")
    assert joined.success
    assert joined.data["game_id"] == game_id


# -- 3. test_banned_player_left_out_of_push_selection --------------------------

@pytest.mark.asyncio
async def test_banned_player_left_out_of_push_selection(service, session_factory):
    season_id = (await service.create_season("p1", SEASON_POLICY)).data["season_id"]
    assert (await service.join_season(season_id, "p1")).success
    assert (await service.join_season(season_id, "p2")).success
    assert (await service.ban_player("p2", ADMIN)).success
    assert (await service.join_season(season_id, "p3")).data["activated"] is True

    offered = await fetch_all(
        session_factory,
        select(Turn).where(Turn.status == C.TURN_OFFERED),
    )
    assert len(offered) == 3
    assert all(t.player_id not in (None, "p2") for t in offered)


# -- 4. test_banned_player_cannot_claim ----------------------------------------

@pytest.mark.asyncio
async def test_banned_player_cannot_claim(service, session_factory):
    season_id = await start_season(service)
    (g1, g1_turns), _, _ = await season_games(session_factory, season_id)
    offer = g1_turns[1]
    assert (await service.submit_turn(g1_turns[0].id, "p1", "A whale hums")).success

    assert (await service.ban_player(offer.player_id, ADMIN)).success
    blocked = await service.claim_turn(offer.id, offer.player_id)
    assert not blocked.success
    assert blocked.key == "player_banned"
    assert (await fetch_one(session_factory, Turn, offer.id)).status == C.TURN_OFFERED
