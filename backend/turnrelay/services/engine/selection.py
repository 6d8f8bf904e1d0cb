"""Next-player selection.

Selection is a pipeline over season-wide turn statistics:

1. MUST rules drop ineligible players and may leave nobody.
2. SHOULD rules narrow the remaining candidates in order; a rule whose
   result would be empty is skipped.
3. Ties go to the lexicographically smallest player id.

Every rule is a plain function ``(candidates, context) -> candidates`` so
each can be tested on its own.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

from flask import current_app

from turnrelay import db
from turnrelay.errors import NoEligiblePlayersError, NotFoundError
from turnrelay.models import Game, Player, Turn, TurnStatus, TurnType


@dataclass(frozen=True)
class Candidate:
    player_id: str
    writing_count: int = 0
    drawing_count: int = 0
    pending_count: int = 0
    has_played_in_game: bool = False

    def count_for(self, turn_type: str) -> int:
        return self.writing_count if turn_type == TurnType.WRITING else self.drawing_count


@dataclass(frozen=True)
class SelectionContext:
    game_id: str
    turn_type: str
    season_size: int
    previous_player_id: Optional[str] = None
    declined_player_id: Optional[str] = None


Rule = Callable[[List[Candidate], SelectionContext], List[Candidate]]


def compute_candidates(player_ids: Iterable[str], season_turns: Iterable, game_id: str) -> List[Candidate]:
    """Per-player counts over every turn in the season.

    ``season_turns`` items need ``player_id``, ``game_id``, ``type`` and
    ``status`` attributes. Only OFFERED, PENDING, COMPLETED and SKIPPED
    turns count toward a player's totals.
    """
    stats = {pid: {'writing': 0, 'drawing': 0, 'pending': 0, 'played': False} for pid in player_ids}
    for turn in season_turns:
        entry = stats.get(turn.player_id)
        if entry is None or turn.status not in TurnStatus.ASSIGNED:
            continue
        if turn.type == TurnType.WRITING:
            entry['writing'] += 1
        elif turn.type == TurnType.DRAWING:
            entry['drawing'] += 1
        if turn.status == TurnStatus.PENDING:
            entry['pending'] += 1
        if turn.game_id == game_id:
            entry['played'] = True
    return [
        Candidate(
            player_id=pid,
            writing_count=s['writing'],
            drawing_count=s['drawing'],
            pending_count=s['pending'],
            has_played_in_game=s['played'],
        )
        for pid, s in stats.items()
    ]


# ---- MUST rules (hard constraints, never relaxed) ----

def not_yet_in_game(candidates, ctx):
    return [c for c in candidates if not c.has_played_in_game]


def no_pending_turn(candidates, ctx):
    return [c for c in candidates if c.pending_count == 0]


# ---- SHOULD rules (soft preferences) ----

def not_previous_player(candidates, ctx):
    # Placeholder for season-wide pair tracking: within one game the previous
    # player is already dropped by not_yet_in_game.
    # TODO: track follower/predecessor pairs across the whole season.
    if not ctx.previous_player_id:
        return candidates
    return [c for c in candidates if c.player_id != ctx.previous_player_id]


def not_recently_declined(candidates, ctx):
    if not ctx.declined_player_id:
        return candidates
    return [c for c in candidates if c.player_id != ctx.declined_player_id]


def under_type_quota(candidates, ctx):
    threshold = ctx.season_size // 2
    return [c for c in candidates if c.count_for(ctx.turn_type) < threshold]


def fewest_of_type(candidates, ctx):
    if not candidates:
        return candidates
    lowest = min(c.count_for(ctx.turn_type) for c in candidates)
    return [c for c in candidates if c.count_for(ctx.turn_type) == lowest]


def fewest_pending(candidates, ctx):
    if not candidates:
        return candidates
    lowest = min(c.pending_count for c in candidates)
    return [c for c in candidates if c.pending_count == lowest]


MUST_RULES: Sequence[Rule] = (not_yet_in_game, no_pending_turn)
SHOULD_RULES: Sequence[Rule] = (
    not_previous_player,
    not_recently_declined,
    under_type_quota,
    fewest_of_type,
    fewest_pending,
)


def eligible_candidates(candidates: List[Candidate], ctx: SelectionContext) -> List[Candidate]:
    for rule in MUST_RULES:
        candidates = rule(candidates, ctx)
    return candidates


def apply_should_rules(candidates: List[Candidate], ctx: SelectionContext) -> List[Candidate]:
    for rule in SHOULD_RULES:
        narrowed = rule(candidates, ctx)
        if narrowed:
            candidates = narrowed
    return candidates


def choose_candidate(candidates: List[Candidate], ctx: SelectionContext) -> Candidate:
    """Run the full pipeline; raises NoEligiblePlayersError when MUST rules leave nobody."""
    remaining = eligible_candidates(list(candidates), ctx)
    if not remaining:
        raise NoEligiblePlayersError(ctx.game_id, ctx.turn_type)
    remaining = apply_should_rules(remaining, ctx)
    return min(remaining, key=lambda c: c.player_id)


class PlayerSelector:
    """Loads season statistics from the store and runs the selection pipeline."""

    def select_next_player(self, game_id: str, turn_type: str, turn: Optional[Turn] = None) -> Player:
        game = db.session.get(Game, game_id)
        if game is None:
            raise NotFoundError('Game', game_id)
        season = game.season
        player_ids = [p.id for p in season.players]

        season_turns = Turn.query.join(Game).filter(Game.season_id == season.id).all()
        if turn is None:
            turn = (
                Turn.query.filter_by(game_id=game_id, status=TurnStatus.AVAILABLE, type=turn_type)
                .order_by(Turn.turn_number)
                .first()
            )

        ctx = SelectionContext(
            game_id=game_id,
            turn_type=turn_type,
            season_size=len(player_ids),
            previous_player_id=self._previous_player_id(game_id, turn),
            declined_player_id=turn.last_declined_player_id if turn else None,
        )
        candidates = compute_candidates(player_ids, season_turns, game_id)
        chosen = choose_candidate(candidates, ctx)
        current_app.logger.info(
            f"[select] game={game_id} type={turn_type} player={chosen.player_id} "
            f"pool={len(candidates)}"
        )
        return db.session.get(Player, chosen.player_id)

    @staticmethod
    def _previous_player_id(game_id: str, turn: Optional[Turn]) -> Optional[str]:
        query = Turn.query.filter(
            Turn.game_id == game_id,
            Turn.status.in_(TurnStatus.FINISHED),
        )
        if turn is not None:
            query = query.filter(Turn.turn_number < turn.turn_number)
        previous = query.order_by(Turn.turn_number.desc()).first()
        return previous.player_id if previous else None
