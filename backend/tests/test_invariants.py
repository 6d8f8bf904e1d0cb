"""Random operation sequences against the engine, checking the turn invariants after every step."""

import random
from collections import Counter

import pytest

from turnrelay import db
from turnrelay.models import Game, ScheduledJob, Turn, TurnStatus, TurnType
from turnrelay.services.season_config import parse_turn_pattern, turn_type_for

PLAYERS = ('pa', 'pb', 'pc', 'pd')


def _content(turn):
    if turn.type == TurnType.WRITING:
        return 'some words', 'text'
    return 'https://img.example.com/x.png', 'image'


def _check_invariants(season):
    game_ids = [g.id for g in Game.query.filter_by(season_id=season.id)]
    turns = Turn.query.filter(Turn.game_id.in_(game_ids)).all()

    pending = Counter(t.player_id for t in turns if t.status == TurnStatus.PENDING)
    assert all(count <= 1 for count in pending.values()), pending

    held = Counter((t.game_id, t.player_id) for t in turns if t.status in TurnStatus.ASSIGNED)
    assert all(count <= 1 for count in held.values()), held

    pattern = parse_turn_pattern(season.turn_pattern)
    for game_id in game_ids:
        numbers = sorted(t.turn_number for t in turns if t.game_id == game_id)
        assert numbers == list(range(1, len(numbers) + 1))
    for turn in turns:
        assert turn.type == turn_type_for(pattern, turn.turn_number)

    jobs = {j.id for j in ScheduledJob.query.all()}
    for turn in turns:
        claim_job = f"turn-claim-timeout-{turn.id}" in jobs
        submission_job = f"turn-submission-timeout-{turn.id}" in jobs
        assert claim_job == (turn.status == TurnStatus.OFFERED), turn.to_dict()
        assert submission_job == (turn.status == TurnStatus.PENDING), turn.to_dict()
        if turn.status == TurnStatus.AVAILABLE:
            assert turn.player_id is None and turn.offered_at is None


def _step(rng, engine, clock, game_ids):
    turns = Turn.query.filter(Turn.game_id.in_(game_ids)).all()
    by_status = {}
    for turn in turns:
        by_status.setdefault(turn.status, []).append(turn)

    op = rng.choice(['offer_next', 'claim', 'claim_other', 'submit', 'dismiss', 'skip', 'tick'])
    if op == 'offer_next':
        engine.offer_next(rng.choice(game_ids))
    elif op in ('claim', 'claim_other') and by_status.get(TurnStatus.OFFERED):
        turn = rng.choice(by_status[TurnStatus.OFFERED])
        player = turn.player_id if op == 'claim' else rng.choice(PLAYERS)
        engine.claim(turn.id, player)
    elif op == 'submit' and by_status.get(TurnStatus.PENDING):
        turn = rng.choice(by_status[TurnStatus.PENDING])
        content, content_type = _content(turn)
        engine.submit(turn.id, turn.player_id, content, content_type)
    elif op == 'dismiss' and by_status.get(TurnStatus.OFFERED):
        engine.dismiss(rng.choice(by_status[TurnStatus.OFFERED]).id)
    elif op == 'skip' and turns:
        engine.skip(rng.choice(turns).id)
    elif op == 'tick':
        clock.advance(minutes=rng.choice([10, 61, 121, 300]))
        engine.scheduler.run_due()


@pytest.mark.parametrize('seed', range(8))
def test_invariants_hold_over_random_sequences(engine, factory, clock, seed):
    rng = random.Random(seed)
    season = factory.season(PLAYERS)
    game_ids = [factory.game(season).id for _ in range(3)]
    for game_id in game_ids:
        engine.offer_next(game_id)
    _check_invariants(season)

    for _ in range(60):
        _step(rng, engine, clock, game_ids)
        db.session.expire_all()
        _check_invariants(season)
