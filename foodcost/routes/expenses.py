from flask import Blueprint, jsonify
from ..models import db, FixedExpense, VariableExpense
from .calculations import (monthly_equivalent, annual_equivalent, total_monthly_fixed, total_annual_fixed,
                           filter_by_month, filter_by_year, round2)
from .utils import (get_client_id, scoped_query, get_scoped_or_404, get_payload, read_fields, apply_fields,
                    as_text, as_optional_text, as_non_negative, as_day_of_month, as_bool, as_date, as_frequency,
                    get_period_args, log_audit)

expenses_blueprint = Blueprint('expenses', __name__)

FIXED_EXPENSE_FIELDS = {
    'name': (as_text, True),
    'category': (as_optional_text, False),
    'amount': (as_non_negative, True),
    'frequency': (as_frequency, False),
    'due_date': (as_day_of_month, False),
    'description': (as_optional_text, False),
    'is_active': (as_bool, False),
}

VARIABLE_EXPENSE_FIELDS = {
    'name': (as_text, True),
    'category': (as_optional_text, False),
    'amount': (as_non_negative, True),
    'expense_date': (as_date, True),
    'payment_method': (as_optional_text, False),
    'receipt': (as_optional_text, False),
    'description': (as_optional_text, False),
}


def _fixed_expense_dict(expense):
    data = expense.to_dict()
    data['monthly_equivalent'] = round2(monthly_equivalent(expense))
    data['annual_equivalent'] = round2(annual_equivalent(expense))
    return data


def _group_by_category(expenses):
    totals = {}
    for expense in expenses:
        category = expense.category or ''
        totals[category] = totals.get(category, 0) + expense.amount
    return {category: round2(amount) for category, amount in
            sorted(totals.items(), key=lambda item: item[1], reverse=True)}


# ----------------------------
# Fixed Expenses
# ----------------------------
@expenses_blueprint.route('/fixed-expenses', methods=['GET'])
def fixed_expenses():
    client_id = get_client_id()
    rows = scoped_query(FixedExpense, client_id).order_by(FixedExpense.name).all()
    return jsonify([_fixed_expense_dict(e) for e in rows])


@expenses_blueprint.route('/fixed-expenses/summary', methods=['GET'])
def fixed_expenses_summary():
    client_id = get_client_id()
    rows = scoped_query(FixedExpense, client_id).all()
    active = [e for e in rows if e.is_active]
    return jsonify({
        'active_count': len(active),
        'total_count': len(rows),
        'total_monthly': round2(total_monthly_fixed(active)),
        'total_annual': round2(total_annual_fixed(active)),
    })


@expenses_blueprint.route('/fixed-expenses', methods=['POST'])
def add_fixed_expense():
    client_id = get_client_id()
    values = read_fields(get_payload(), FIXED_EXPENSE_FIELDS)

    expense = apply_fields(FixedExpense(client_id=client_id), values)
    db.session.add(expense)
    db.session.flush()
    log_audit("CREATE", "FixedExpense", expense.id, f"Created fixed expense {expense.name}", client_id)
    db.session.commit()
    return jsonify(_fixed_expense_dict(expense)), 201


@expenses_blueprint.route('/fixed-expenses/<int:expense_id>', methods=['PUT', 'PATCH'])
def edit_fixed_expense(expense_id):
    client_id = get_client_id()
    expense = get_scoped_or_404(FixedExpense, client_id, expense_id)
    apply_fields(expense, read_fields(get_payload(), FIXED_EXPENSE_FIELDS, partial=True))
    log_audit("UPDATE", "FixedExpense", expense.id, f"Updated fixed expense {expense.name}", client_id)
    db.session.commit()
    return jsonify(_fixed_expense_dict(expense))


@expenses_blueprint.route('/fixed-expenses/<int:expense_id>', methods=['DELETE'])
def delete_fixed_expense(expense_id):
    client_id = get_client_id()
    expense = get_scoped_or_404(FixedExpense, client_id, expense_id)
    db.session.delete(expense)
    log_audit("DELETE", "FixedExpense", expense_id, f"Deleted fixed expense {expense.name}", client_id)
    db.session.commit()
    return '', 204


# ----------------------------
# Variable Expenses
# ----------------------------
@expenses_blueprint.route('/variable-expenses', methods=['GET'])
def variable_expenses():
    client_id = get_client_id()
    rows = scoped_query(VariableExpense, client_id).order_by(VariableExpense.expense_date.desc()).all()
    return jsonify([e.to_dict() for e in rows])


@expenses_blueprint.route('/variable-expenses/summary', methods=['GET'])
def variable_expenses_summary():
    client_id = get_client_id()
    year, month = get_period_args()
    rows = scoped_query(VariableExpense, client_id).all()
    month_rows = filter_by_month(rows, year, month, 'expense_date')
    year_rows = filter_by_year(rows, year, 'expense_date')
    return jsonify({
        'year': year,
        'month': month,
        'total_month': round2(sum(e.amount for e in month_rows)),
        'total_year': round2(sum(e.amount for e in year_rows)),
        'total_all': round2(sum(e.amount for e in rows)),
        'by_category': _group_by_category(rows),
    })


@expenses_blueprint.route('/variable-expenses', methods=['POST'])
def add_variable_expense():
    client_id = get_client_id()
    values = read_fields(get_payload(), VARIABLE_EXPENSE_FIELDS)

    expense = apply_fields(VariableExpense(client_id=client_id), values)
    db.session.add(expense)
    db.session.flush()
    log_audit("CREATE", "VariableExpense", expense.id, f"Created variable expense {expense.name}", client_id)
    db.session.commit()
    return jsonify(expense.to_dict()), 201


@expenses_blueprint.route('/variable-expenses/<int:expense_id>', methods=['PUT', 'PATCH'])
def edit_variable_expense(expense_id):
    client_id = get_client_id()
    expense = get_scoped_or_404(VariableExpense, client_id, expense_id)
    apply_fields(expense, read_fields(get_payload(), VARIABLE_EXPENSE_FIELDS, partial=True))
    log_audit("UPDATE", "VariableExpense", expense.id, f"Updated variable expense {expense.name}", client_id)
    db.session.commit()
    return jsonify(expense.to_dict())


@expenses_blueprint.route('/variable-expenses/<int:expense_id>', methods=['DELETE'])
def delete_variable_expense(expense_id):
    client_id = get_client_id()
    expense = get_scoped_or_404(VariableExpense, client_id, expense_id)
    db.session.delete(expense)
    log_audit("DELETE", "VariableExpense", expense_id, f"Deleted variable expense {expense.name}", client_id)
    db.session.commit()
    return '', 204
