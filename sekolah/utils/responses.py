from flask import jsonify


def success(data=None, message=None, status=200, **extra):
    """Bentuk respons sukses standar: {success: true, message, data, ...}."""
    payload = {'success': True}
    if message:
        payload['message'] = message
    if data is not None:
        payload['data'] = data
    payload.update(extra)
    return jsonify(payload), status
