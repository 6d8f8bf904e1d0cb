from flask import Blueprint, jsonify, request

from turnrelay import db
from turnrelay.api import result_response
from turnrelay.models import Season
from turnrelay.services.engine import get_engine

seasons = Blueprint('seasons', __name__)


@seasons.route('', methods=['POST'])
def create_season():
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    external_id = data.get('creator_external_id')
    if not all([name, external_id]):
        return jsonify({'error': 'Season name and creator_external_id are required'}), 400
    config = data.get('config') or {}
    if not isinstance(config, dict):
        return jsonify({'error': 'config must be an object'}), 400
    result = get_engine().create_season(external_id, name, data.get('creator_name'), **config)
    return result_response(result, 201)


@seasons.route('/<string:season_id>', methods=['GET'])
def get_season(season_id):
    season = db.session.get(Season, season_id)
    if season is None:
        return jsonify({'error': 'Season not found'}), 404
    return jsonify(season.to_dict(include_games=True))


@seasons.route('/<string:season_id>/join', methods=['POST'])
def join_season(season_id):
    data = request.get_json(silent=True) or {}
    external_id = data.get('external_id')
    if not external_id:
        return jsonify({'error': 'external_id is required'}), 400
    result = get_engine().join_season(season_id, external_id, data.get('name'))
    return result_response(result)


@seasons.route('/<string:season_id>/activate', methods=['POST'])
def activate_season(season_id):
    result = get_engine().activate_season(season_id, 'manual')
    return result_response(result, serialize=lambda s: s.to_dict(include_games=True))


@seasons.route('/<string:season_id>/terminate', methods=['POST'])
def terminate_season(season_id):
    return result_response(get_engine().terminate_season(season_id))


@seasons.route('/<string:season_id>/recheck', methods=['POST'])
def recheck_season(season_id):
    result = get_engine().recheck_stalled(season_id)
    return result_response(result, serialize=lambda turns: {'offered': [t.to_dict() for t in turns]})
