from datetime import timedelta

from conftest import first_turn, turn_number
from turnrelay import db
from turnrelay.models import (
    GameStatus,
    Game,
    ScheduledJob,
    Season,
    SeasonStatus,
    Turn,
    TurnStatus,
    TurnType,
)


def test_four_player_relay_with_claim_timeout(engine, factory, clock):
    season = factory.season(('pd', 'pb', 'pc', 'pa'))
    game = factory.game(season)

    offered = engine.offer_next(game.id, 'season_activated')
    assert offered.success
    turn1 = first_turn(game.id)
    assert turn1.status == TurnStatus.OFFERED
    assert turn1.player_id == 'pa'

    assert engine.claim(turn1.id, 'pa').success
    assert engine.submit(turn1.id, 'pa', 'A lighthouse keeper finds a map', 'text').success

    turn2 = turn_number(game.id, 2)
    assert turn2.type == TurnType.DRAWING
    assert turn2.status == TurnStatus.OFFERED
    assert turn2.player_id == 'pb'

    # nobody claims: the offer lapses and goes to someone else
    clock.advance(minutes=61)
    assert engine.scheduler.run_due() == 1
    turn2 = turn_number(game.id, 2)
    assert turn2.status == TurnStatus.OFFERED
    assert turn2.player_id == 'pc'
    assert turn2.last_declined_player_id == 'pb'
    assert turn2.offered_at == clock.now
    job = db.session.get(ScheduledJob, f"turn-claim-timeout-{turn2.id}")
    assert job.run_at == clock.now + timedelta(minutes=60)


def test_submission_timeout_skips_and_moves_on(engine, factory, clock):
    season = factory.season(('pa', 'pb', 'pc'))
    game = factory.game(season)
    engine.offer_next(game.id)
    turn1 = first_turn(game.id)
    engine.claim(turn1.id, 'pa')

    clock.advance(minutes=121)
    engine.scheduler.run_due()

    turn1 = first_turn(game.id)
    assert turn1.status == TurnStatus.SKIPPED
    assert turn1.skipped_at == clock.now
    turn2 = turn_number(game.id, 2)
    assert turn2.type == TurnType.DRAWING
    assert turn2.status == TurnStatus.OFFERED
    assert turn2.player_id == 'pb'


def test_game_and_season_complete_after_every_member_played(engine, factory):
    season = factory.season(('pa', 'pb'))
    game = factory.game(season)
    engine.offer_next(game.id)

    turn1 = first_turn(game.id)
    engine.claim(turn1.id, 'pa')
    engine.submit(turn1.id, 'pa', 'first line', 'text')
    turn2 = turn_number(game.id, 2)
    assert turn2.player_id == 'pb'
    engine.claim(turn2.id, 'pb')
    engine.submit(turn2.id, 'pb', 'https://img.example.com/2.png', 'image')

    game = db.session.get(Game, game.id)
    assert game.status == GameStatus.COMPLETED
    assert game.completed_at is not None
    assert db.session.get(Season, season.id).status == SeasonStatus.COMPLETED
    assert Turn.query.filter_by(game_id=game.id).count() == 2
    assert ScheduledJob.query.count() == 0


def test_stalled_game_waits_for_recheck(engine, factory):
    season = factory.season(('pa', 'pb'))
    game1 = factory.game(season)
    game2 = factory.game(season)
    engine.offer_next(game1.id)
    engine.offer_next(game2.id)
    t1 = first_turn(game1.id)
    t2 = first_turn(game2.id)
    assert (t1.player_id, t2.player_id) == ('pa', 'pb')
    engine.claim(t1.id, 'pa')
    engine.claim(t2.id, 'pb')

    # pa finishes; the only other player is busy in game2
    engine.submit(t1.id, 'pa', 'opening', 'text')
    stalled = turn_number(game1.id, 2)
    assert stalled.status == TurnStatus.AVAILABLE
    result = engine.offer_next(game1.id)
    assert not result.success
    assert result.code == 'no_eligible_players'

    engine.submit(t2.id, 'pb', 'another opening', 'text')
    assert turn_number(game2.id, 2).player_id == 'pa'
    # the stall is not retried by itself
    assert turn_number(game1.id, 2).status == TurnStatus.AVAILABLE

    recheck = engine.recheck_stalled(season.id)
    assert [t.id for t in recheck.value] == [stalled.id]
    stalled = turn_number(game1.id, 2)
    assert (stalled.status, stalled.player_id) == (TurnStatus.OFFERED, 'pb')


def test_explicit_dismissal_reoffers(engine, factory):
    season = factory.season(('pa', 'pb', 'pc'))
    game = factory.game(season)
    engine.offer_next(game.id)
    turn = first_turn(game.id)

    wrong = engine.dismiss(turn.id, 'pb')
    assert wrong.code == 'invalid_state'

    result = engine.dismiss(turn.id, 'pa')
    assert result.success
    turn = first_turn(game.id)
    assert turn.status == TurnStatus.OFFERED
    assert turn.player_id == 'pb'
    assert turn.last_declined_player_id == 'pa'


def test_sole_candidate_is_reoffered_after_lapse(engine, factory, clock):
    season = factory.season(('pa', 'pb'))
    game = factory.game(season)
    engine.offer_next(game.id)
    turn1 = first_turn(game.id)
    engine.claim(turn1.id, 'pa')
    engine.submit(turn1.id, 'pa', 'only pb can follow', 'text')

    clock.advance(minutes=61)
    engine.scheduler.run_due()
    turn2 = turn_number(game.id, 2)
    assert (turn2.status, turn2.player_id) == (TurnStatus.OFFERED, 'pb')
    assert turn2.last_declined_player_id == 'pb'


def test_stale_timeouts_are_no_ops(engine, factory):
    season = factory.season(('pa', 'pb'))
    game = factory.game(season)
    engine.offer_next(game.id)
    turn = first_turn(game.id)
    engine.claim(turn.id, 'pa')

    engine.orchestrator.handle_claim_timeout({'turnId': turn.id, 'playerId': 'pa'})
    engine.orchestrator.handle_submission_timeout({'turnId': turn.id, 'playerId': 'pb'})
    engine.orchestrator.handle_submission_timeout({'turnId': 'missing', 'playerId': 'pa'})
    turn = first_turn(game.id)
    assert (turn.status, turn.player_id) == (TurnStatus.PENDING, 'pa')


def test_turn_numbers_follow_pattern(engine, factory):
    season = factory.season(('pa', 'pb', 'pc', 'pd'), turn_pattern='writing,writing,drawing')
    game = factory.game(season)
    engine.offer_next(game.id)
    for number in range(1, 4):
        turn = turn_number(game.id, number)
        engine.claim(turn.id, turn.player_id)
        engine.skip(turn.id)
    types = [t.type for t in Turn.query.filter_by(game_id=game.id).order_by(Turn.turn_number)]
    assert types == [TurnType.WRITING, TurnType.WRITING, TurnType.DRAWING, TurnType.WRITING]


def test_offer_next_on_finished_game_does_nothing(engine, factory):
    season = factory.season(('pa', 'pb'))
    game = factory.game(season)
    game.status = GameStatus.TERMINATED
    db.session.commit()
    result = engine.offer_next(game.id)
    assert result.success
    assert result.value is None
    assert first_turn(game.id).status == TurnStatus.AVAILABLE


def test_dismissal_stands_when_reoffer_cannot_be_scheduled(engine, factory, flask_app, caplog):
    season = factory.season(('pa', 'pb', 'pc'))
    game = factory.game(season)
    engine.offer_next(game.id)
    turn = first_turn(game.id)

    flask_app.config['SCHEDULER_MAX_TIMERS'] = 0
    result = engine.dismiss(turn.id, 'pa')
    assert result.success

    turn = first_turn(game.id)
    assert (turn.status, turn.player_id) == (TurnStatus.AVAILABLE, None)
    assert turn.last_declined_player_id == 'pa'
    assert ScheduledJob.query.count() == 0
    assert any('[engine-cascade]' in r.getMessage() for r in caplog.records)
