from flask import Blueprint, jsonify
from ..models import db, EmployeeCost, EMPLOYEE_BURDEN_FIELDS
from .calculations import total_employee_burden, round2
from .utils import (get_client_id, scoped_query, get_scoped_or_404, get_payload, read_fields, apply_fields,
                    as_text, as_non_negative, log_audit)

labor_blueprint = Blueprint('labor', __name__)

EMPLOYEE_COST_FIELDS = {
    'professional': (as_text, True),
    'hourly_cost': (as_non_negative, False),
}
EMPLOYEE_COST_FIELDS.update({field: (as_non_negative, False) for field in EMPLOYEE_BURDEN_FIELDS})

# ----------------------------
# Employee Costs Management
# ----------------------------
@labor_blueprint.route('/employee-costs', methods=['GET'])
def employee_costs():
    client_id = get_client_id()
    rows = scoped_query(EmployeeCost, client_id).order_by(EmployeeCost.professional).all()
    return jsonify([e.to_dict() for e in rows])


@labor_blueprint.route('/employee-costs/summary', methods=['GET'])
def employee_costs_summary():
    client_id = get_client_id()
    rows = scoped_query(EmployeeCost, client_id).all()
    return jsonify({
        'employees': len(rows),
        'total_monthly_burden': round2(total_employee_burden(rows)),
    })


@labor_blueprint.route('/employee-costs', methods=['POST'])
def add_employee_cost():
    client_id = get_client_id()
    values = read_fields(get_payload(), EMPLOYEE_COST_FIELDS)

    employee = apply_fields(EmployeeCost(client_id=client_id), values)
    db.session.add(employee)
    db.session.flush()
    log_audit("CREATE", "EmployeeCost", employee.id, f"Created employee cost {employee.professional}", client_id)
    db.session.commit()
    return jsonify(employee.to_dict()), 201


@labor_blueprint.route('/employee-costs/<int:employee_id>', methods=['PUT', 'PATCH'])
def edit_employee_cost(employee_id):
    client_id = get_client_id()
    employee = get_scoped_or_404(EmployeeCost, client_id, employee_id)
    apply_fields(employee, read_fields(get_payload(), EMPLOYEE_COST_FIELDS, partial=True))
    log_audit("UPDATE", "EmployeeCost", employee.id, f"Updated employee cost {employee.professional}", client_id)
    db.session.commit()
    return jsonify(employee.to_dict())


@labor_blueprint.route('/employee-costs/<int:employee_id>', methods=['DELETE'])
def delete_employee_cost(employee_id):
    client_id = get_client_id()
    employee = get_scoped_or_404(EmployeeCost, client_id, employee_id)
    db.session.delete(employee)
    log_audit("DELETE", "EmployeeCost", employee_id, f"Deleted employee cost {employee.professional}", client_id)
    db.session.commit()
    return '', 204
