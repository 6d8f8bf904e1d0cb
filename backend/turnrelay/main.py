from flask import Blueprint, jsonify

from turnrelay.models import ScheduledJob, Season, SeasonStatus

main = Blueprint('main', __name__)


@main.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok'})


@main.route('/api/seasons/active', methods=['GET'])
def active_seasons():
    seasons = (
        Season.query.filter(Season.status.in_((SeasonStatus.OPEN, SeasonStatus.ACTIVE)))
        .order_by(Season.created_at)
        .all()
    )
    return jsonify({
        'seasons': [s.to_dict() for s in seasons],
        'pending_jobs': ScheduledJob.query.count(),
    })
