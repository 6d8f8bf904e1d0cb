from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from turnrelay import db
from turnrelay.errors import InvalidStateError, NoEligiblePlayersError
from turnrelay.models import GameStatus, Turn, TurnStatus
from turnrelay.services.season_config import parse_turn_pattern, turn_type_for
from .transitions import load_game, load_turn


class TurnOfferingOrchestrator:
    """Decides which turn is offered next and to whom.

    Entry points are game creation, a finished turn (``advance``), both
    timeout phases and an explicit dismissal. A game for which the selector
    finds nobody stalls until something re-runs ``offer_next``.
    """

    def __init__(self, selector, lifecycle, evaluator):
        self.selector = selector
        self.lifecycle = lifecycle
        self.evaluator = evaluator

    def offer_next(self, game_id: str, reason: str = 'manual') -> Optional[Turn]:
        """Offer the lowest AVAILABLE turn; None when the game has none.

        Raises NoEligiblePlayersError when the selector finds nobody.
        """
        game = load_game(game_id)
        if game.status in (GameStatus.COMPLETED, GameStatus.TERMINATED):
            current_app.logger.info(f"[offer-skip] game={game_id} status={game.status} reason={reason}")
            return None

        turn = (
            Turn.query.filter_by(game_id=game_id, status=TurnStatus.AVAILABLE)
            .order_by(Turn.turn_number)
            .first()
        )
        if turn is None:
            current_app.logger.info(f"[offer-none] game={game_id} reason={reason}")
            self.evaluator.evaluate(game_id)
            return None

        try:
            player = self.selector.select_next_player(game_id, turn.type, turn)
        except NoEligiblePlayersError:
            current_app.logger.warning(
                f"[offer-stall] game={game_id} turn={turn.id} type={turn.type} reason={reason}"
            )
            raise

        if game.status == GameStatus.PENDING_START:
            game.status = GameStatus.ACTIVE
        self.lifecycle.offer(turn, player)
        current_app.logger.info(
            f"[offer-next] game={game_id} turn={turn.id} player={player.id} reason={reason}"
        )
        return turn

    def advance(self, game_id: str, reason: str = 'turn_completed') -> Optional[Turn]:
        """Move a game on after a turn finished: complete it or offer the next turn."""
        if self.evaluator.evaluate(game_id):
            return None
        game = load_game(game_id)
        if game.status == GameStatus.TERMINATED:
            return None

        turns = Turn.query.filter_by(game_id=game_id).order_by(Turn.turn_number).all()
        if any(t.status == TurnStatus.AVAILABLE for t in turns):
            return self.try_offer_next(game_id, reason)
        if any(t.status not in TurnStatus.FINISHED for t in turns):
            # a turn is still in flight
            return None

        number = turns[-1].turn_number + 1 if turns else 1
        pattern = parse_turn_pattern(game.season.turn_pattern)
        db.session.add(Turn(game_id=game_id, turn_number=number, type=turn_type_for(pattern, number)))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            current_app.logger.info(f"[turn-create-skip] game={game_id} number={number} already exists")
        else:
            current_app.logger.info(f"[turn-create] game={game_id} number={number}")
        return self.try_offer_next(game_id, reason)

    def handle_claim_timeout(self, payload: dict) -> None:
        turn = self._expected_turn(payload, TurnStatus.OFFERED, 'claim')
        if turn is None:
            return
        game_id = turn.game_id
        self.lifecycle.dismiss(turn.id)
        self.try_offer_next(game_id, 'claim_timeout')

    def handle_submission_timeout(self, payload: dict) -> None:
        turn = self._expected_turn(payload, TurnStatus.PENDING, 'submission')
        if turn is None:
            return
        game_id = turn.game_id
        self.lifecycle.skip(turn.id)
        self.advance(game_id, 'turn_skipped')

    def dismiss(self, turn_id: str, player_id: Optional[str] = None) -> Turn:
        """A player turning down an offer. The caller re-offers the turn."""
        turn = load_turn(turn_id)
        if player_id is not None and turn.player_id != player_id:
            raise InvalidStateError(f"Turn {turn_id} is not offered to player {player_id}", turn.status)
        return self.lifecycle.dismiss(turn_id)

    def try_offer_next(self, game_id: str, reason: str) -> Optional[Turn]:
        try:
            return self.offer_next(game_id, reason)
        except NoEligiblePlayersError:
            return None

    @staticmethod
    def _expected_turn(payload, status, phase):
        turn_id = (payload or {}).get('turnId')
        player_id = (payload or {}).get('playerId')
        turn = db.session.get(Turn, turn_id) if turn_id else None
        if turn is None or turn.status != status or turn.player_id != player_id:
            current_app.logger.info(
                f"[timeout-noop] phase={phase} turn={turn_id} player={player_id} "
                f"status={turn.status if turn else None}"
            )
            return None
        current_app.logger.info(f"[timeout] phase={phase} turn={turn_id} player={player_id}")
        return turn
