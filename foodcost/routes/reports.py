from flask import Blueprint, jsonify, current_app
from .calculations import build_dashboard, ratios_to_dict
from .utils import get_client_id, get_period_args, load_snapshot, expense_ratios_for_month

reports_blueprint = Blueprint('reports', __name__)


# Monthly Dashboard
@reports_blueprint.route('/dashboard')
def dashboard():
    client_id = get_client_id()
    year, month = get_period_args()

    # Every figure is recomputed from a fresh snapshot, nothing is cached
    snapshot = load_snapshot(client_id)
    data = build_dashboard(snapshot, year, month)
    data['currency_symbol'] = current_app.config['CURRENCY_SYMBOL']
    return jsonify(data)


@reports_blueprint.route('/expense-ratios')
def expense_ratios():
    client_id = get_client_id()
    year, month = get_period_args()
    data = ratios_to_dict(expense_ratios_for_month(client_id, year, month))
    data['year'] = year
    data['month'] = month
    data['currency_symbol'] = current_app.config['CURRENCY_SYMBOL']
    return jsonify(data)
