from flask import jsonify

from turnrelay.errors import HTTP_STATUS


def result_response(result, status=200, serialize=None):
    """Render an EngineResult: the value on success, the error and its code otherwise."""
    if not result.success:
        return jsonify({'error': str(result.error), 'code': result.code}), HTTP_STATUS.get(result.code, 400)
    value = result.value
    if serialize is not None:
        value = serialize(value)
    elif hasattr(value, 'to_dict'):
        value = value.to_dict()
    return jsonify(value), status
