"""Season management: players, membership, activation and termination."""

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from turnrelay import db
from turnrelay.errors import InvalidStateError, ValidationError
from turnrelay.models import (
    Game,
    GameStatus,
    JobPhase,
    Player,
    Season,
    SeasonPlayer,
    SeasonStatus,
    Turn,
    TurnStatus,
)
from turnrelay.services.engine.events import emit, season_room
from turnrelay.services.engine.scheduler import minutes_from, season_job_id
from turnrelay.services.engine.transitions import load_season, transition
from turnrelay.services.season_config import (
    parse_duration_minutes,
    parse_turn_pattern,
    turn_type_for,
    validate_duration,
)

CONFIG_FIELDS = (
    'min_players',
    'max_players',
    'turn_pattern',
    'claim_timeout',
    'writing_timeout',
    'drawing_timeout',
    'open_duration',
)

ACTIVATION_TRIGGERS = ('manual', 'max_players', 'open_duration')


def _as_int(value, field):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


class SeasonService:
    def __init__(self, scheduler, lifecycle, orchestrator, clock):
        self.scheduler = scheduler
        self.lifecycle = lifecycle
        self.orchestrator = orchestrator
        self.clock = clock

    def get_or_create_player(self, external_id, name=None) -> Player:
        """Players are created lazily the first time they show up."""
        if not external_id or not str(external_id).strip():
            raise ValidationError('external_id is required')
        external_id = str(external_id).strip()
        player = Player.query.filter_by(external_id=external_id).first()
        if player is not None:
            if name and name != player.name:
                player.name = name
                db.session.commit()
            return player

        player = Player(external_id=external_id, name=name or external_id)
        db.session.add(player)
        try:
            db.session.commit()
        except IntegrityError:
            # created concurrently
            db.session.rollback()
            return Player.query.filter_by(external_id=external_id).one()
        current_app.logger.info(f"[player-create] player={player.id} external_id={external_id}")
        return player

    def create_season(self, creator: Player, name, **config) -> Season:
        if not name or not str(name).strip():
            raise ValidationError('Season name is required')
        name = str(name).strip()
        if Season.query.filter_by(name=name).first() is not None:
            raise ValidationError(f"Season name '{name}' is already taken")
        values = self._build_config(config)

        now = self.clock()
        season = Season(name=name, status=SeasonStatus.OPEN, creator_id=creator.id,
                        created_at=now, updated_at=now, **values)
        db.session.add(season)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ValidationError(f"Season name '{name}' is already taken") from None
        db.session.add(SeasonPlayer(season_id=season.id, player_id=creator.id, joined_at=now))
        db.session.flush()

        open_minutes = parse_duration_minutes(season.open_duration)
        if open_minutes:
            self.scheduler.schedule(
                season_job_id(season.id),
                minutes_from(now, open_minutes),
                {'seasonId': season.id},
                JobPhase.ACTIVATION,
                commit=False,
            )
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ValidationError(f"Season name '{name}' is already taken") from None
        current_app.logger.info(
            f"[season-create] season={season.id} creator={creator.id} "
            f"min={season.min_players} max={season.max_players} open={season.open_duration}"
        )
        return season

    def join_season(self, season_id, player: Player) -> Season:
        season = load_season(season_id)
        if season.status != SeasonStatus.OPEN:
            raise InvalidStateError(f"Season {season_id} is {season.status}", season.status)
        member_ids = {p.id for p in season.players}
        if player.id in member_ids:
            raise InvalidStateError(f"Player {player.id} already joined season {season_id}", season.status)
        if season.max_players is not None and len(member_ids) >= season.max_players:
            raise InvalidStateError(f"Season {season_id} is full", season.status)

        db.session.add(SeasonPlayer(season_id=season.id, player_id=player.id, joined_at=self.clock()))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise InvalidStateError(f"Player {player.id} already joined season {season_id}") from None

        count = len(member_ids) + 1
        current_app.logger.info(f"[season-join] season={season_id} player={player.id} players={count}")
        emit('state_update', {'season_id': season_id, 'players': count}, season_room(season_id))
        if season.max_players is not None and count >= season.max_players:
            self.activate_season(season_id, 'max_players')
        return season

    def activate_season(self, season_id, trigger='manual') -> Season:
        """Create one game per member and offer every first turn."""
        if trigger not in ACTIVATION_TRIGGERS:
            raise ValidationError(f"Unknown activation trigger '{trigger}'")
        season = load_season(season_id)
        if season.status not in SeasonStatus.PRE_ACTIVATION:
            raise InvalidStateError(f"Season {season_id} is {season.status}", season.status)
        players = season.players
        if trigger == 'max_players':
            if season.max_players is None or len(players) < season.max_players:
                raise InvalidStateError(f"Season {season_id} has not reached max players", season.status)
        elif len(players) < season.min_players:
            raise InvalidStateError(
                f"Season {season_id} needs {season.min_players} players, has {len(players)}",
                season.status,
            )

        applied = transition(
            Season, season_id, SeasonStatus.PRE_ACTIVATION,
            dict(status=SeasonStatus.ACTIVE),
        )
        if not applied:
            db.session.rollback()
            raise InvalidStateError(f"Season {season_id} was activated concurrently", season.status)

        first_type = turn_type_for(parse_turn_pattern(season.turn_pattern), 1)
        now = self.clock()
        games = []
        for _ in players:
            game = Game(season_id=season_id, status=GameStatus.ACTIVE, created_at=now)
            db.session.add(game)
            db.session.flush()
            db.session.add(Turn(game_id=game.id, turn_number=1, type=first_type))
            games.append(game)
        self.scheduler.cancel(season_job_id(season_id), commit=False)
        db.session.commit()

        game_ids = [g.id for g in games]
        current_app.logger.info(
            f"[season-activate] season={season_id} trigger={trigger} games={len(game_ids)}"
        )
        emit('season_activated', {'season_id': season_id, 'trigger': trigger, 'game_ids': game_ids},
             season_room(season_id))
        for game_id in game_ids:
            self.orchestrator.try_offer_next(game_id, 'season_activated')
        return load_season(season_id)

    def handle_open_duration_timeout(self, payload: dict) -> None:
        season_id = (payload or {}).get('seasonId')
        season = db.session.get(Season, season_id) if season_id else None
        if season is None:
            current_app.logger.info(f"[season-timeout-noop] season={season_id} not found")
            return
        if season.status not in SeasonStatus.PRE_ACTIVATION:
            current_app.logger.info(f"[season-timeout-noop] season={season_id} status={season.status}")
            return
        count = len(season.players)
        if count < season.min_players:
            current_app.logger.info(
                f"[season-timeout-noop] season={season_id} players={count} min={season.min_players}"
            )
            return
        self.activate_season(season_id, 'open_duration')

    def terminate_season(self, season_id) -> Season:
        """Stop a season: skip outstanding turns and mark games and season TERMINATED."""
        season = load_season(season_id)
        if season.status in (SeasonStatus.COMPLETED, SeasonStatus.TERMINATED):
            raise InvalidStateError(f"Season {season_id} is {season.status}", season.status)

        applied = transition(
            Season, season_id, (SeasonStatus.SETUP, SeasonStatus.OPEN, SeasonStatus.ACTIVE),
            dict(status=SeasonStatus.TERMINATED),
        )
        if not applied:
            db.session.rollback()
            raise InvalidStateError(f"Season {season_id} changed before termination", season.status)
        db.session.execute(
            update(Game)
            .where(Game.season_id == season_id,
                   Game.status.in_((GameStatus.PENDING_START, GameStatus.ACTIVE)))
            .values(status=GameStatus.TERMINATED)
            .execution_options(synchronize_session=False)
        )
        self.scheduler.cancel(season_job_id(season_id), commit=False)
        db.session.commit()

        outstanding = (
            Turn.query.join(Game)
            .filter(Game.season_id == season_id,
                    Turn.status.in_((TurnStatus.OFFERED, TurnStatus.PENDING)))
            .all()
        )
        for turn_id in [t.id for t in outstanding]:
            self.lifecycle.skip(turn_id)

        current_app.logger.info(f"[season-terminate] season={season_id} skipped={len(outstanding)}")
        emit('season_terminated', {'season_id': season_id}, season_room(season_id))
        return load_season(season_id)

    def _build_config(self, overrides):
        unknown = sorted(set(overrides) - set(CONFIG_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown season settings: {', '.join(unknown)}")
        config = current_app.config
        values = {
            'min_players': config.get('MIN_PLAYERS', 6),
            'max_players': config.get('MAX_PLAYERS', 20),
            'turn_pattern': config.get('DEFAULT_TURN_PATTERN', 'writing,drawing'),
            'claim_timeout': None,
            'writing_timeout': None,
            'drawing_timeout': None,
            'open_duration': config.get('OPEN_DURATION', '7d'),
        }
        values.update(overrides)

        values['min_players'] = _as_int(values['min_players'], 'min_players')
        if values['min_players'] < 2:
            raise ValidationError('min_players must be at least 2')
        if values['max_players'] is not None:
            values['max_players'] = _as_int(values['max_players'], 'max_players')
            if values['max_players'] < values['min_players']:
                raise ValidationError(
                    f"max_players ({values['max_players']}) cannot be less than "
                    f"min_players ({values['min_players']})"
                )
        pattern = parse_turn_pattern(values['turn_pattern'])
        values['turn_pattern'] = ','.join(t.lower() for t in pattern)
        for field in ('claim_timeout', 'writing_timeout', 'drawing_timeout', 'open_duration'):
            values[field] = validate_duration(values[field], field)
        return values
