from datetime import datetime
from flask import Blueprint, jsonify, request, current_app
from flask_babel import gettext as _
from ..ifood import IfoodClient

integrations_blueprint = Blueprint('integrations', __name__)


def _bearer_token():
    authorization = request.headers.get('Authorization', '')
    if not authorization:
        return None
    scheme, _sep, token = authorization.partition(' ')
    return token if scheme.lower() == 'bearer' and token else authorization


def _unauthorized():
    return jsonify({'error': _('Authorization token required')}), 401


# ----------------------------
# iFood proxy
# ----------------------------
@integrations_blueprint.route('/api/ifood/auth', methods=['POST'])
def ifood_auth():
    payload = request.get_json(silent=True) or {}
    client = IfoodClient.from_config(current_app.config)
    client.client_id = payload.get('clientId') or payload.get('client_id') or client.client_id
    client.client_secret = payload.get('clientSecret') or payload.get('client_secret') or client.client_secret
    return jsonify(client.request_token())


@integrations_blueprint.route('/api/ifood/sales/<merchant_id>', methods=['GET'])
def ifood_sales(merchant_id):
    token = _bearer_token()
    if not token:
        return _unauthorized()

    client = IfoodClient.from_config(current_app.config, access_token=token)
    data = client.fetch_sales(
        merchant_id,
        request.args.get('beginDate'),
        request.args.get('endDate'),
        request.args.get('page', 1, type=int),
    )
    return jsonify(data)


@integrations_blueprint.route('/api/ifood/check', methods=['GET'])
def ifood_check():
    token = _bearer_token()
    if not token:
        return _unauthorized()

    client = IfoodClient.from_config(current_app.config, access_token=token)
    return jsonify({'connected': True, 'data': client.check_connection()})


@integrations_blueprint.route('/api/test', methods=['GET'])
def proxy_test():
    return jsonify({'message': _('iFood proxy is running'), 'timestamp': datetime.utcnow().isoformat()})
