from flask_socketio import emit, join_room, leave_room

from turnrelay import db, socketio
from turnrelay.models import Game, Player, Season
from turnrelay.services.engine.events import game_room, player_room, season_room


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_player(data):
    player_id = (data or {}).get('player_id')
    if not player_id:
        emit('error', {'message': 'player_id is required'})
        return
    if db.session.get(Player, player_id) is None:
        emit('error', {'message': 'Player not found'})
        return
    room = player_room(player_id)
    join_room(room)
    emit('joined', {'room': room})


def handle_join_game(data):
    game_id = (data or {}).get('game_id')
    if not game_id:
        emit('error', {'message': 'game_id is required'})
        return
    if db.session.get(Game, game_id) is None:
        emit('error', {'message': 'Game not found'})
        return
    room = game_room(game_id)
    join_room(room)
    emit('joined', {'room': room})


def handle_join_season(data):
    season_id = (data or {}).get('season_id')
    if not season_id:
        emit('error', {'message': 'season_id is required'})
        return
    if db.session.get(Season, season_id) is None:
        emit('error', {'message': 'Season not found'})
        return
    room = season_room(season_id)
    join_room(room)
    emit('joined', {'room': room})


def handle_leave(data):
    room = (data or {}).get('room')
    if not room or room.split(':', 1)[0] not in ('player', 'game', 'season'):
        emit('error', {'message': 'a player:, game: or season: room is required'})
        return
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


HANDLERS = (
    ('connect', handle_connect),
    ('join_player', handle_join_player),
    ('join_game', handle_join_game),
    ('join_season', handle_join_season),
    ('leave', handle_leave),
    ('ping', handle_ping),
)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    for event, handler in HANDLERS:
        socketio.on_event(event, handler, namespace='/ws')

    if testing:
        for event, handler in HANDLERS:
            socketio.on_event(event, handler, namespace='/')
