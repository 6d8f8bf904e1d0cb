from datetime import timedelta

from turnrelay import db
from turnrelay.models import ScheduledJob, Season


def test_jobs_list_and_recover(flask_app, engine, clock):
    run_at = clock() + timedelta(minutes=5)
    assert engine.schedule('echo-1', run_at, {'n': 1}, 'echo').success
    runner = flask_app.test_cli_runner()

    result = runner.invoke(args=['jobs-list'])
    assert result.exit_code == 0
    assert 'echo-1\techo\t' in result.output

    clock.advance(minutes=10)
    result = runner.invoke(args=['jobs-recover'])
    assert result.exit_code == 0
    assert 'Fired overdue jobs: 1' in result.output
    db.session.expire_all()
    assert ScheduledJob.query.count() == 0


def test_db_reset_empties_tables(flask_app, factory):
    factory.season(('pa', 'pb'))
    db.session.remove()
    result = flask_app.test_cli_runner().invoke(args=['db-reset'])
    assert result.exit_code == 0
    assert 'Database has been reset!' in result.output
    assert Season.query.count() == 0
