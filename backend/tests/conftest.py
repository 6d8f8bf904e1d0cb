import itertools
import os
import sys
from datetime import datetime, timedelta

import pytest

# Ensure the backend root (containing the `turnrelay` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from turnrelay import create_app, db, socketio
from turnrelay.models import (
    Game,
    GameStatus,
    Player,
    Season,
    SeasonPlayer,
    SeasonStatus,
    Turn,
    TurnType,
)
from turnrelay.services.engine import get_engine


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = []
    CLAIM_TIMEOUT_MINUTES = 60
    WRITING_TIMEOUT_MINUTES = 120
    DRAWING_TIMEOUT_MINUTES = 240
    DEFAULT_TURN_PATTERN = 'writing,drawing'
    MIN_PLAYERS = 2
    MAX_PLAYERS = 20
    OPEN_DURATION = '7d'
    TIMER_TICK_SEC = 0.05
    TIMER_HEARTBEAT_SEC = 0
    SCHEDULER_MAX_TIMERS = 10000


class FakeClock:
    """Engine clock that only moves when a test says so."""

    def __init__(self, start=datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class Factory:
    """Builds seasons, players and games straight in the store."""

    _names = itertools.count(1)

    def __init__(self, clock):
        self.clock = clock

    def player(self, player_id):
        player = db.session.get(Player, player_id)
        if player is None:
            player = Player(id=player_id, external_id=f"ext-{player_id}", name=player_id.upper())
            db.session.add(player)
            db.session.flush()
        return player

    def season(self, player_ids=('pa', 'pb', 'pc', 'pd'), status=SeasonStatus.ACTIVE, **config):
        values = dict(min_players=2, max_players=None, turn_pattern='writing,drawing', open_duration=None)
        values.update(config)
        season = Season(name=f"season-{next(self._names)}", status=status, **values)
        db.session.add(season)
        db.session.flush()
        for pid in player_ids:
            self.player(pid)
            db.session.add(SeasonPlayer(season_id=season.id, player_id=pid, joined_at=self.clock()))
        db.session.commit()
        return season

    def game(self, season, first_type=TurnType.WRITING, **overrides):
        game = Game(season_id=season.id, status=GameStatus.ACTIVE, **overrides)
        db.session.add(game)
        db.session.flush()
        db.session.add(Turn(game_id=game.id, turn_number=1, type=first_type))
        db.session.commit()
        return game


def first_turn(game_id):
    return Turn.query.filter_by(game_id=game_id, turn_number=1).one()


def turn_number(game_id, number):
    return Turn.query.filter_by(game_id=game_id, turn_number=number).one()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def flask_app(clock):
    application = create_app(TestConfig, clock=clock)
    with application.app_context():
        # Ensure models are imported so tables are created
        import turnrelay.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def engine(flask_app):
    return get_engine(flask_app)


@pytest.fixture()
def factory(flask_app, clock):
    return Factory(clock)


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
