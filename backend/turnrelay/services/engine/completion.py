from flask import current_app

from turnrelay import db
from turnrelay.models import Game, GameStatus, Season, SeasonStatus, Turn, TurnStatus
from .events import emit, game_room, season_room
from .transitions import load_game, load_season, transition


class GameCompletionEvaluator:
    """Detects finished games and, through them, finished seasons."""

    def __init__(self, clock):
        self.clock = clock

    def is_complete(self, game_id: str) -> bool:
        """True once every season member has a COMPLETED or SKIPPED turn in the game."""
        game = load_game(game_id)
        members = {p.id for p in game.season.players}
        if not members:
            return False
        finished = {
            player_id
            for (player_id,) in db.session.query(Turn.player_id)
            .filter(Turn.game_id == game_id, Turn.status.in_(TurnStatus.FINISHED))
            .distinct()
        }
        return members <= finished

    def evaluate(self, game_id: str) -> bool:
        """Flip the game to COMPLETED on the first complete evaluation.

        Returns whether the game is complete, whoever flipped it.
        """
        if not self.is_complete(game_id):
            return False
        game = load_game(game_id)
        if game.status in (GameStatus.COMPLETED, GameStatus.TERMINATED):
            return True

        now = self.clock()
        flipped = transition(
            Game, game_id, (GameStatus.PENDING_START, GameStatus.ACTIVE),
            dict(status=GameStatus.COMPLETED, completed_at=now),
        )
        db.session.commit()
        if flipped:
            current_app.logger.info(f"[game-complete] game={game_id} season={game.season_id}")
            emit('game_completed', {'game_id': game_id, 'season_id': game.season_id},
                 game_room(game_id), season_room(game.season_id))
            self.check_season(game.season_id)
        return True

    def check_season(self, season_id: str) -> bool:
        season = load_season(season_id)
        if season.status == SeasonStatus.COMPLETED:
            return True
        if season.status != SeasonStatus.ACTIVE:
            return False
        games = Game.query.filter_by(season_id=season_id).all()
        if not games or any(g.status != GameStatus.COMPLETED for g in games):
            return False

        flipped = transition(
            Season, season_id, (SeasonStatus.ACTIVE,),
            dict(status=SeasonStatus.COMPLETED),
        )
        db.session.commit()
        if flipped:
            current_app.logger.info(f"[season-complete] season={season_id} games={len(games)}")
            emit('season_completed', {'season_id': season_id}, season_room(season_id))
        return True
