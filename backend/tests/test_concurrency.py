import threading

import pytest
from sqlalchemy import event

from conftest import Factory, FakeClock, TestConfig, first_turn
from turnrelay import create_app, db
from turnrelay.models import Player, ScheduledJob, Turn, TurnStatus
from turnrelay.services.engine import get_engine


@pytest.fixture()
def file_app(tmp_path):
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 15}}

    clock = FakeClock()
    application = create_app(FileConfig, clock=clock)
    with application.app_context():
        engine = db.engine

        # Serialize writers at BEGIN so a waiting transaction never holds a stale read lock
        @event.listens_for(engine, 'connect')
        def _no_implicit_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, 'begin')
        def _begin_immediate(conn):
            conn.exec_driver_sql('BEGIN IMMEDIATE')

        db.create_all()
        yield application, clock
        db.session.remove()
        db.drop_all()


def _race(application, calls):
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, fn):
        with application.app_context():
            barrier.wait()
            results[index] = fn(get_engine(application))
            db.session.remove()

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def test_concurrent_claims_yield_one_pending(file_app):
    application, clock = file_app
    factory = Factory(clock)
    season = factory.season(('pa', 'pb'))
    game = factory.game(season)
    turn = first_turn(game.id)
    get_engine(application).lifecycle.offer(turn, db.session.get(Player, 'pa'))
    turn_id = turn.id
    db.session.remove()

    results = _race(application, [
        lambda engine: engine.claim(turn_id, 'pa'),
        lambda engine: engine.claim(turn_id, 'pa'),
    ])

    assert sorted(r.success for r in results) == [False, True]
    failed = next(r for r in results if not r.success)
    assert failed.code == 'invalid_state'
    turn = db.session.get(Turn, turn_id)
    assert turn.status == TurnStatus.PENDING
    jobs = [j.id for j in ScheduledJob.query.all()]
    assert jobs == [f"turn-submission-timeout-{turn_id}"]


def test_claim_racing_dismiss_has_one_winner(file_app):
    application, clock = file_app
    factory = Factory(clock)
    season = factory.season(('pa', 'pb'))
    game = factory.game(season)
    turn = first_turn(game.id)
    get_engine(application).lifecycle.offer(turn, db.session.get(Player, 'pa'))
    turn_id = turn.id
    db.session.remove()

    results = _race(application, [
        lambda engine: engine.claim(turn_id, 'pa'),
        lambda engine: engine.dismiss(turn_id, 'pa'),
    ])

    assert sum(r.success for r in results) == 1
    turn = db.session.get(Turn, turn_id)
    if turn.status == TurnStatus.PENDING:
        assert turn.player_id == 'pa'
    else:
        # the dismissal won and the turn went straight to the other player
        assert (turn.status, turn.player_id) == (TurnStatus.OFFERED, 'pb')
