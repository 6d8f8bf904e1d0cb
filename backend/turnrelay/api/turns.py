from flask import Blueprint, jsonify, request

from turnrelay import db
from turnrelay.api import result_response
from turnrelay.models import Game, Player, ScheduledJob, Turn, TurnStatus
from turnrelay.services.engine import get_engine

turns = Blueprint('turns', __name__)


@turns.route('/games/<string:game_id>', methods=['GET'])
def get_game(game_id):
    game = db.session.get(Game, game_id)
    if game is None:
        return jsonify({'error': 'Game not found'}), 404
    data = game.to_dict(include_turns=True)
    data['complete'] = get_engine().is_complete(game_id).value
    return jsonify(data)


@turns.route('/games/<string:game_id>/offer-next', methods=['POST'])
def offer_next(game_id):
    data = request.get_json(silent=True) or {}
    result = get_engine().offer_next(game_id, data.get('reason') or 'manual')
    return result_response(result, serialize=lambda turn: {'turn': turn.to_dict() if turn else None})


@turns.route('/games/<string:game_id>/next-player', methods=['GET'])
def next_player(game_id):
    turn_type = (request.args.get('type') or '').upper()
    if not turn_type:
        return jsonify({'error': 'type is required'}), 400
    return result_response(get_engine().select_next_player(game_id, turn_type))


@turns.route('/turns/<string:turn_id>', methods=['GET'])
def get_turn(turn_id):
    turn = db.session.get(Turn, turn_id)
    if turn is None:
        return jsonify({'error': 'Turn not found'}), 404
    return jsonify(turn.to_dict())


@turns.route('/turns/<string:turn_id>/claim', methods=['POST'])
def claim_turn(turn_id):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required'}), 400
    return result_response(get_engine().claim(turn_id, player_id))


@turns.route('/turns/<string:turn_id>/submit', methods=['POST'])
def submit_turn(turn_id):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required'}), 400
    result = get_engine().submit(turn_id, player_id, data.get('content'), data.get('content_type'))
    return result_response(result)


@turns.route('/turns/<string:turn_id>/dismiss', methods=['POST'])
def dismiss_turn(turn_id):
    data = request.get_json(silent=True) or {}
    return result_response(get_engine().dismiss(turn_id, data.get('player_id')))


@turns.route('/turns/<string:turn_id>/skip', methods=['POST'])
def skip_turn(turn_id):
    return result_response(get_engine().skip(turn_id))


@turns.route('/players/<string:player_id>/turns', methods=['GET'])
def player_turns(player_id):
    if db.session.get(Player, player_id) is None:
        return jsonify({'error': 'Player not found'}), 404
    query = Turn.query.filter_by(player_id=player_id)
    status = (request.args.get('status') or '').upper()
    if status:
        if status not in (TurnStatus.AVAILABLE,) + TurnStatus.ASSIGNED:
            return jsonify({'error': f'Unknown status {status}'}), 400
        query = query.filter_by(status=status)
    return jsonify([t.to_dict() for t in query.order_by(Turn.created_at).all()])


@turns.route('/jobs', methods=['GET'])
def list_jobs():
    jobs = ScheduledJob.query.order_by(ScheduledJob.run_at).all()
    return jsonify([j.to_dict() for j in jobs])
