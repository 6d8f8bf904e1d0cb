"""Compare-and-swap helpers over the store.

Each guarded transition is one UPDATE whose WHERE clause carries the
expected status; the affected row count tells whether it applied.
"""

from sqlalchemy import select, update
from sqlalchemy.orm import aliased

from turnrelay import db
from turnrelay.errors import NotFoundError
from turnrelay.models import Game, Season, Turn, TurnStatus


def load_turn(turn_id) -> Turn:
    turn = db.session.get(Turn, turn_id)
    if turn is None:
        raise NotFoundError('Turn', turn_id)
    return turn


def load_game(game_id) -> Game:
    game = db.session.get(Game, game_id)
    if game is None:
        raise NotFoundError('Game', game_id)
    return game


def load_season(season_id) -> Season:
    season = db.session.get(Season, season_id)
    if season is None:
        raise NotFoundError('Season', season_id)
    return season


def transition(model, ident, expected, values, *criteria) -> bool:
    """UPDATE ``model`` row ``ident`` only while its status is in ``expected``.

    Extra ``criteria`` join the WHERE clause. The session is not committed;
    the caller owns the transaction. Loaded instances of the row are
    expired so the next attribute access reads the new state.
    """
    stmt = (
        update(model)
        .where(model.id == ident, model.status.in_(tuple(expected)), *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    applied = db.session.execute(stmt).rowcount == 1
    instance = db.session.identity_map.get(db.session.identity_key(model, ident))
    if instance is not None:
        db.session.expire(instance)
    return applied


def season_game_ids(season_id):
    return select(Game.id).where(Game.season_id == season_id)


def player_free_in_season(player_id, season_id, exclude_turn_id=None):
    """NOT EXISTS guard: the player holds no PENDING turn anywhere in the season."""
    held = aliased(Turn)
    query = select(held.id).where(
        held.player_id == player_id,
        held.status == TurnStatus.PENDING,
        held.game_id.in_(season_game_ids(season_id)),
    )
    if exclude_turn_id is not None:
        query = query.where(held.id != exclude_turn_id)
    return ~query.exists()


def player_absent_from_game(player_id, game_id, exclude_turn_id=None):
    """NOT EXISTS guard: the player holds no assigned turn in the game."""
    held = aliased(Turn)
    query = select(held.id).where(
        held.player_id == player_id,
        held.game_id == game_id,
        held.status.in_(TurnStatus.ASSIGNED),
    )
    if exclude_turn_id is not None:
        query = query.where(held.id != exclude_turn_id)
    return ~query.exists()
