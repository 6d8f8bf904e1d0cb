from turnrelay import db
from datetime import datetime, timezone
import json
import uuid


def utcnow():
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id():
    return uuid.uuid4().hex


class TurnType:
    WRITING = 'WRITING'
    DRAWING = 'DRAWING'
    ALL = (WRITING, DRAWING)


class TurnStatus:
    AVAILABLE = 'AVAILABLE'
    OFFERED = 'OFFERED'
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    SKIPPED = 'SKIPPED'
    # Statuses that tie a turn to its player
    ASSIGNED = (OFFERED, PENDING, COMPLETED, SKIPPED)
    FINISHED = (COMPLETED, SKIPPED)


class GameStatus:
    PENDING_START = 'PENDING_START'
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    TERMINATED = 'TERMINATED'


class SeasonStatus:
    SETUP = 'SETUP'
    OPEN = 'OPEN'
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    TERMINATED = 'TERMINATED'
    PRE_ACTIVATION = (SETUP, OPEN)


class JobPhase:
    CLAIM = 'claim'
    SUBMISSION = 'submission'
    ACTIVATION = 'activation'


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    external_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'external_id': self.external_id,
            'name': self.name,
        }


class SeasonPlayer(db.Model):
    __tablename__ = 'season_player'
    season_id = db.Column(db.String(32), db.ForeignKey('season.id'), primary_key=True)
    player_id = db.Column(db.String(32), db.ForeignKey('player.id'), primary_key=True, index=True)
    joined_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    player = db.relationship('Player')


class Season(db.Model):
    __tablename__ = 'season'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(128), unique=True, nullable=False)
    status = db.Column(db.String(32), default=SeasonStatus.SETUP, nullable=False, index=True)
    creator_id = db.Column(db.String(32), db.ForeignKey('player.id'), nullable=True)
    # Config; timeouts are duration strings such as "1d" or "2h30m"
    min_players = db.Column(db.Integer, nullable=False, default=6)
    max_players = db.Column(db.Integer, nullable=True, default=20)
    turn_pattern = db.Column(db.String(256), nullable=False, default='writing,drawing')
    claim_timeout = db.Column(db.String(32), nullable=True)
    writing_timeout = db.Column(db.String(32), nullable=True)
    drawing_timeout = db.Column(db.String(32), nullable=True)
    open_duration = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    memberships = db.relationship(
        'SeasonPlayer',
        order_by=[SeasonPlayer.joined_at, SeasonPlayer.player_id],
        cascade='all, delete-orphan',
    )
    games = db.relationship('Game', back_populates='season', order_by='Game.created_at')

    @property
    def players(self):
        return [m.player for m in self.memberships]

    def config_dict(self):
        return {
            'min_players': self.min_players,
            'max_players': self.max_players,
            'turn_pattern': self.turn_pattern,
            'claim_timeout': self.claim_timeout,
            'writing_timeout': self.writing_timeout,
            'drawing_timeout': self.drawing_timeout,
            'open_duration': self.open_duration,
        }

    def to_dict(self, include_games=False):
        data = {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'creator_id': self.creator_id,
            'config': self.config_dict(),
            'players': [p.to_dict() for p in self.players],
        }
        if include_games:
            data['games'] = [g.to_dict() for g in self.games]
        return data


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    season_id = db.Column(db.String(32), db.ForeignKey('season.id'), nullable=False, index=True)
    status = db.Column(db.String(32), default=GameStatus.PENDING_START, nullable=False, index=True)
    # Optional per-game overrides of the season timeouts
    claim_timeout = db.Column(db.String(32), nullable=True)
    writing_timeout = db.Column(db.String(32), nullable=True)
    drawing_timeout = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    season = db.relationship('Season', back_populates='games')
    turns = db.relationship('Turn', back_populates='game', order_by='Turn.turn_number')

    def to_dict(self, include_turns=False):
        data = {
            'id': self.id,
            'season_id': self.season_id,
            'status': self.status,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_turns:
            data['turns'] = [t.to_dict() for t in self.turns]
        return data


class Turn(db.Model):
    __tablename__ = 'turn'
    __table_args__ = (
        db.UniqueConstraint('game_id', 'turn_number', name='uq_turn_game_number'),
    )
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id'), nullable=False, index=True)
    turn_number = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), default=TurnStatus.AVAILABLE, nullable=False, index=True)
    player_id = db.Column(db.String(32), db.ForeignKey('player.id'), nullable=True, index=True)
    offered_at = db.Column(db.DateTime, nullable=True)
    claimed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    skipped_at = db.Column(db.DateTime, nullable=True)
    text_content = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.Text, nullable=True)
    last_declined_player_id = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    game = db.relationship('Game', back_populates='turns')
    player = db.relationship('Player')

    @property
    def content(self):
        return self.text_content if self.type == TurnType.WRITING else self.image_url

    def to_dict(self):
        def _ts(value):
            return value.isoformat() if value else None
        return {
            'id': self.id,
            'game_id': self.game_id,
            'turn_number': self.turn_number,
            'type': self.type,
            'status': self.status,
            'player_id': self.player_id,
            'offered_at': _ts(self.offered_at),
            'claimed_at': _ts(self.claimed_at),
            'completed_at': _ts(self.completed_at),
            'skipped_at': _ts(self.skipped_at),
            'content': self.content,
        }


class ScheduledJob(db.Model):
    __tablename__ = 'scheduled_job'
    id = db.Column(db.String(128), primary_key=True)
    phase = db.Column(db.String(32), nullable=False, index=True)
    run_at = db.Column(db.DateTime, nullable=False, index=True)
    payload = db.Column(db.Text, nullable=True)  # JSON-encoded dict
    status = db.Column(db.String(16), default='pending', nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def data(self):
        try:
            return json.loads(self.payload) if self.payload else {}
        except ValueError:
            return {}

    def to_dict(self):
        return {
            'id': self.id,
            'phase': self.phase,
            'run_at': self.run_at.isoformat(),
            'payload': self.data,
            'status': self.status,
        }
