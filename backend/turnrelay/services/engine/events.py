"""Socket.IO notifications for engine state changes.

Payloads carry data only; rendering them for people is the client's job.
"""

from turnrelay import socketio

NAMESPACE = '/ws'


def player_room(player_id):
    return f"player:{player_id}"


def game_room(game_id):
    return f"game:{game_id}"


def season_room(season_id):
    return f"season:{season_id}"


def emit(event, payload, *rooms):
    for room in rooms:
        socketio.emit(event, payload, to=room, namespace=NAMESPACE)


def emit_turn(event, turn, player_id=None, **extra):
    """Notify the game room and the affected player about a turn change."""
    payload = {'game_id': turn.game_id, 'turn': turn.to_dict()}
    payload.update(extra)
    rooms = [game_room(turn.game_id)]
    target = player_id or turn.player_id
    if target:
        rooms.append(player_room(target))
    emit(event, payload, *rooms)
    emit('state_update', {'game_id': turn.game_id}, game_room(turn.game_id))
