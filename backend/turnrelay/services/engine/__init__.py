"""The turn relay engine: selection, lifecycle, timeouts, offering and completion.

One long-lived ``Engine`` per application wires the components together
and is reachable through ``get_engine()``. Its public calls return an
``EngineResult`` instead of raising, so routes and socket handlers decide
how a failure is presented.
"""

from typing import Optional

from flask import current_app

from turnrelay import db
from turnrelay.errors import NotFoundError, TurnRelayError, ValidationError
from turnrelay.models import Game, GameStatus, JobPhase, Player, TurnType, utcnow
from .completion import GameCompletionEvaluator
from .lifecycle import TurnLifecycleManager
from .offering import TurnOfferingOrchestrator
from .results import EngineResult
from .scheduler import TimeoutScheduler
from .selection import PlayerSelector
from .transitions import load_game, load_season, load_turn
from turnrelay.services.seasons import SeasonService

EXTENSION_KEY = 'turnrelay'


class Engine:
    def __init__(self, clock=None):
        self.clock = clock or utcnow
        self.scheduler = TimeoutScheduler(self.clock)
        self.selector = PlayerSelector()
        self.lifecycle = TurnLifecycleManager(self.scheduler, self.clock)
        self.evaluator = GameCompletionEvaluator(self.clock)
        self.orchestrator = TurnOfferingOrchestrator(self.selector, self.lifecycle, self.evaluator)
        self.seasons = SeasonService(self.scheduler, self.lifecycle, self.orchestrator, self.clock)

    def init_app(self, app):
        self.scheduler.init_app(app)
        self.scheduler.register_handler(JobPhase.CLAIM, self.orchestrator.handle_claim_timeout)
        self.scheduler.register_handler(JobPhase.SUBMISSION, self.orchestrator.handle_submission_timeout)
        self.scheduler.register_handler(JobPhase.ACTIVATION, self.seasons.handle_open_duration_timeout)
        app.extensions[EXTENSION_KEY] = self
        # Re-arm persisted jobs once per process when background timers are on
        self.scheduler.start(app)

    # ---- turn transitions ----

    def offer(self, turn_id, player_id) -> EngineResult:
        def _offer():
            turn = load_turn(turn_id)
            player = db.session.get(Player, player_id)
            if player is None:
                raise NotFoundError('Player', player_id)
            return self.lifecycle.offer(turn, player)
        return self._call('offer', _offer)

    def claim(self, turn_id, player_id) -> EngineResult:
        return self._call('claim', self.lifecycle.claim, turn_id, player_id)

    def submit(self, turn_id, player_id, content, content_type) -> EngineResult:
        result = self._call('submit', self.lifecycle.submit, turn_id, player_id, content, content_type)
        if result.success:
            self._cascade(self.orchestrator.advance, result.value.game_id, 'turn_completed')
        return result

    def dismiss(self, turn_id, player_id=None) -> EngineResult:
        result = self._call('dismiss', self.orchestrator.dismiss, turn_id, player_id)
        if result.success:
            self._cascade(self.orchestrator.try_offer_next, result.value.game_id, 'dismissed')
        return result

    def skip(self, turn_id) -> EngineResult:
        result = self._call('skip', self.lifecycle.skip, turn_id)
        if result.success:
            self._cascade(self.orchestrator.advance, result.value.game_id, 'turn_skipped')
        return result

    # ---- selection and offering ----

    def select_next_player(self, game_id, turn_type) -> EngineResult:
        def _select():
            if turn_type not in TurnType.ALL:
                raise ValidationError(f"Unknown turn type '{turn_type}'")
            load_game(game_id)
            return self.selector.select_next_player(game_id, turn_type)
        return self._call('select_next_player', _select)

    def offer_next(self, game_id, reason='manual') -> EngineResult:
        return self._call('offer_next', self.orchestrator.offer_next, game_id, reason)

    def is_complete(self, game_id) -> EngineResult:
        return self._call('is_complete', self.evaluator.is_complete, game_id)

    def recheck_stalled(self, season_id) -> EngineResult:
        """Retry offering in every active game of the season that has no turn in flight."""
        def _recheck():
            load_season(season_id)
            offered = []
            games = Game.query.filter_by(season_id=season_id, status=GameStatus.ACTIVE).all()
            for game_id in [g.id for g in games]:
                turn = self.orchestrator.try_offer_next(game_id, 'recheck')
                if turn is not None:
                    offered.append(turn)
            return offered
        return self._call('recheck_stalled', _recheck)

    # ---- scheduler ----

    def schedule(self, job_id, run_at, payload, phase) -> EngineResult:
        return self._call('schedule', self.scheduler.schedule, job_id, run_at, payload, phase)

    def cancel(self, job_id) -> EngineResult:
        return self._call('cancel', self.scheduler.cancel, job_id)

    def recover(self) -> EngineResult:
        return self._call('recover', self.scheduler.recover)

    # ---- seasons ----

    def create_season(self, creator_external_id, name, creator_name=None, **config) -> EngineResult:
        def _create():
            creator = self.seasons.get_or_create_player(creator_external_id, creator_name)
            return self.seasons.create_season(creator, name, **config)
        return self._call('create_season', _create)

    def join_season(self, season_id, external_id, name=None) -> EngineResult:
        def _join():
            player = self.seasons.get_or_create_player(external_id, name)
            return self.seasons.join_season(season_id, player)
        return self._call('join_season', _join)

    def activate_season(self, season_id, trigger='manual') -> EngineResult:
        return self._call('activate_season', self.seasons.activate_season, season_id, trigger)

    def terminate_season(self, season_id) -> EngineResult:
        return self._call('terminate_season', self.seasons.terminate_season, season_id)

    # ---- helpers ----

    def _call(self, op, fn, *args, **kwargs) -> EngineResult:
        try:
            return EngineResult.ok(fn(*args, **kwargs))
        except TurnRelayError as exc:
            db.session.rollback()
            current_app.logger.info(f"[engine-fail] op={op} code={exc.code} error={exc}")
            return EngineResult.fail(exc)

    def _cascade(self, fn, *args) -> Optional[object]:
        try:
            return fn(*args)
        except TurnRelayError as exc:
            db.session.rollback()
            current_app.logger.warning(f"[engine-cascade] step={fn.__name__} code={exc.code} error={exc}")
            return None


def get_engine(app=None) -> Engine:
    return (app or current_app).extensions[EXTENSION_KEY]
