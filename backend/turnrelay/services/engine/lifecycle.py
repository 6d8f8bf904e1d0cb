from urllib.parse import urlparse

from flask import current_app
from sqlalchemy import or_

from turnrelay import db
from turnrelay.errors import InvalidStateError, NotFoundError, ValidationError
from turnrelay.models import GameStatus, JobPhase, Player, Turn, TurnStatus, TurnType
from turnrelay.services.season_config import resolve_timeouts
from .events import emit_turn
from .scheduler import minutes_from, turn_job_id
from .transitions import (
    load_turn,
    player_absent_from_game,
    player_free_in_season,
    transition,
)

CONTENT_TYPES = {
    TurnType.WRITING: 'text',
    TurnType.DRAWING: 'image',
}


class TurnLifecycleManager:
    """Guarded state transitions for a single turn.

    - Every transition is one conditional UPDATE; a lost race raises
      InvalidStateError
    - Timeout jobs are written in the same transaction as the transition
    - Events go out only after the commit
    """

    def __init__(self, scheduler, clock):
        self.scheduler = scheduler
        self.clock = clock

    def offer(self, turn: Turn, player: Player) -> Turn:
        game = turn.game
        if game.status in (GameStatus.COMPLETED, GameStatus.TERMINATED):
            raise InvalidStateError(f"Game {game.id} is {game.status}", game.status)
        if player.id not in {p.id for p in game.season.players}:
            raise InvalidStateError(f"Player {player.id} is not in season {game.season_id}")

        now = self.clock()
        timeouts = resolve_timeouts(game)
        applied = transition(
            Turn, turn.id, (TurnStatus.AVAILABLE,),
            dict(status=TurnStatus.OFFERED, player_id=player.id, offered_at=now, updated_at=now),
            player_absent_from_game(player.id, game.id),
        )
        if not applied:
            db.session.rollback()
            if turn.status == TurnStatus.AVAILABLE:
                raise InvalidStateError(
                    f"Player {player.id} already has a turn in game {game.id}", turn.status
                )
            raise InvalidStateError(f"Cannot offer turn {turn.id} in status {turn.status}", turn.status)

        self.scheduler.schedule(
            turn_job_id(JobPhase.CLAIM, turn.id),
            minutes_from(now, timeouts.claim_minutes),
            {'turnId': turn.id, 'playerId': player.id},
            JobPhase.CLAIM,
            commit=False,
        )
        db.session.commit()
        current_app.logger.info(
            f"[turn-offer] turn={turn.id} game={game.id} number={turn.turn_number} "
            f"player={player.id} claim_timeout={timeouts.claim_minutes}m"
        )
        emit_turn('turn_offered', turn)
        return turn

    def claim(self, turn_id: str, player_id: str) -> Turn:
        turn = load_turn(turn_id)
        if db.session.get(Player, player_id) is None:
            raise NotFoundError('Player', player_id)
        game = turn.game

        now = self.clock()
        timeouts = resolve_timeouts(game)
        applied = transition(
            Turn, turn.id, (TurnStatus.OFFERED,),
            dict(status=TurnStatus.PENDING, player_id=player_id, claimed_at=now, updated_at=now),
            or_(Turn.player_id == player_id, Turn.player_id.is_(None)),
            player_free_in_season(player_id, game.season_id),
            player_absent_from_game(player_id, game.id, exclude_turn_id=turn.id),
        )
        if not applied:
            db.session.rollback()
            self._raise_claim_failure(turn, player_id)

        self.scheduler.cancel(turn_job_id(JobPhase.CLAIM, turn.id), commit=False)
        minutes = timeouts.submission_minutes(turn.type)
        self.scheduler.schedule(
            turn_job_id(JobPhase.SUBMISSION, turn.id),
            minutes_from(now, minutes),
            {'turnId': turn.id, 'playerId': player_id},
            JobPhase.SUBMISSION,
            commit=False,
        )
        db.session.commit()
        current_app.logger.info(
            f"[turn-claim] turn={turn.id} player={player_id} submission_timeout={minutes}m"
        )
        emit_turn('turn_claimed', turn)
        return turn

    def submit(self, turn_id: str, player_id: str, content, content_type: str) -> Turn:
        turn = load_turn(turn_id)
        if turn.status != TurnStatus.PENDING:
            raise InvalidStateError(f"Cannot submit turn {turn.id} in status {turn.status}", turn.status)
        if turn.player_id != player_id:
            raise InvalidStateError(f"Turn {turn.id} belongs to another player", turn.status)
        value = self._validate_content(turn, content, content_type)

        now = self.clock()
        values = dict(status=TurnStatus.COMPLETED, completed_at=now, updated_at=now)
        if turn.type == TurnType.WRITING:
            values['text_content'] = value
        else:
            values['image_url'] = value
        applied = transition(
            Turn, turn.id, (TurnStatus.PENDING,), values,
            Turn.player_id == player_id,
        )
        if not applied:
            db.session.rollback()
            raise InvalidStateError(f"Turn {turn.id} changed before submission", turn.status)

        self.scheduler.cancel(turn_job_id(JobPhase.SUBMISSION, turn.id), commit=False)
        db.session.commit()
        current_app.logger.info(f"[turn-submit] turn={turn.id} player={player_id} type={turn.type}")
        emit_turn('turn_completed', turn)
        return turn

    def dismiss(self, turn_id: str) -> Turn:
        turn = load_turn(turn_id)
        declined = turn.player_id
        now = self.clock()
        applied = transition(
            Turn, turn.id, (TurnStatus.OFFERED,),
            dict(
                status=TurnStatus.AVAILABLE,
                player_id=None,
                offered_at=None,
                last_declined_player_id=declined,
                updated_at=now,
            ),
            Turn.player_id.is_(None) if declined is None else Turn.player_id == declined,
        )
        if not applied:
            db.session.rollback()
            raise InvalidStateError(f"Cannot dismiss turn {turn.id} in status {turn.status}", turn.status)

        self.scheduler.cancel(turn_job_id(JobPhase.CLAIM, turn.id), commit=False)
        db.session.commit()
        current_app.logger.info(f"[turn-dismiss] turn={turn.id} declined_by={declined}")
        emit_turn('turn_dismissed', turn, player_id=declined)
        return turn

    def skip(self, turn_id: str) -> Turn:
        """OFFERED or PENDING -> SKIPPED. Finished turns come back unchanged."""
        turn = load_turn(turn_id)
        if turn.status in TurnStatus.FINISHED:
            return turn
        if turn.status == TurnStatus.AVAILABLE:
            raise InvalidStateError(f"Cannot skip turn {turn.id} in status {turn.status}", turn.status)

        now = self.clock()
        applied = transition(
            Turn, turn.id, (TurnStatus.OFFERED, TurnStatus.PENDING),
            dict(status=TurnStatus.SKIPPED, skipped_at=now, updated_at=now),
        )
        if not applied:
            db.session.rollback()
            if turn.status in TurnStatus.FINISHED:
                return turn
            raise InvalidStateError(f"Cannot skip turn {turn.id} in status {turn.status}", turn.status)

        for phase in (JobPhase.CLAIM, JobPhase.SUBMISSION):
            self.scheduler.cancel(turn_job_id(phase, turn.id), commit=False)
        db.session.commit()
        current_app.logger.info(f"[turn-skip] turn={turn.id} player={turn.player_id}")
        emit_turn('turn_skipped', turn)
        return turn

    @staticmethod
    def _raise_claim_failure(turn, player_id):
        if turn.status != TurnStatus.OFFERED:
            raise InvalidStateError(f"Cannot claim turn {turn.id} in status {turn.status}", turn.status)
        if turn.player_id not in (None, player_id):
            raise InvalidStateError(f"Turn {turn.id} is offered to another player", turn.status)
        raise InvalidStateError(
            f"Player {player_id} already has a pending turn in this season", turn.status
        )

    @staticmethod
    def _validate_content(turn, content, content_type):
        expected = CONTENT_TYPES[turn.type]
        if content_type != expected:
            raise ValidationError(
                f"{turn.type} turns take {expected} content, received {content_type!r}"
            )
        if not isinstance(content, str) or not content.strip():
            raise ValidationError('Submission content cannot be empty')
        value = content.strip()
        if expected == 'image':
            parsed = urlparse(value)
            if parsed.scheme not in ('http', 'https') or not parsed.netloc:
                raise ValidationError('Image submissions must be an http(s) URL')
        return value
