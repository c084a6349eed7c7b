import logging
import math
from datetime import date, datetime
from flask import request
from flask_babel import gettext as _
from sqlalchemy.exc import SQLAlchemyError
from ..models import (db, AuditLog, Client, EmployeeCost, FixedExpense, Product, RawMaterial,
                      RawMaterialPurchase, Sale, ValidationError, VariableExpense)
from .calculations import (compute_expense_ratios, cost_recipe_lines, current_period, normalize_frequency,
                           normalize_unit, sales_in_month, total_sales, variable_expenses_in_month)

logger = logging.getLogger(__name__)

# Units offered when registering materials and ingredient lines
units_list = ["kg", "g", "mg", "l", "ml", "cl", "m", "cm", "mm", "un"]


# ----------------------------
# Tenant scoping
# ----------------------------
def get_client_id():
    """
    Tenant of the current request, read from the X-Client-Id header.

    Raises ValidationError when the header is missing or malformed and
    404s when no such client exists.
    """
    value = request.headers.get('X-Client-Id')
    if not value:
        raise ValidationError(_('Missing X-Client-Id header'), 'client_id')
    try:
        client_id = int(value)
    except ValueError:
        raise ValidationError(_('Invalid client id: {}').format(value), 'client_id')

    db.get_or_404(Client, client_id)
    return client_id


def scoped_query(model, client_id):
    return model.query.filter_by(client_id=client_id)


def get_scoped_or_404(model, client_id, object_id):
    return scoped_query(model, client_id).filter_by(id=object_id).first_or_404()


def load_snapshot(client_id):
    """All records the calculations need for one tenant, fetched in one go."""
    return {
        'products': scoped_query(Product, client_id).all(),
        'raw_materials': scoped_query(RawMaterial, client_id).all(),
        'purchases': scoped_query(RawMaterialPurchase, client_id).all(),
        'fixed_expenses': scoped_query(FixedExpense, client_id).all(),
        'variable_expenses': scoped_query(VariableExpense, client_id).all(),
        'employee_costs': scoped_query(EmployeeCost, client_id).all(),
        'sales': scoped_query(Sale, client_id).all(),
    }


def expense_ratios_for_month(client_id, year, month):
    """Expense ratios of one tenant for one month, from freshly queried records."""
    month_sales = sales_in_month(scoped_query(Sale, client_id).all(), year, month)
    month_variable = variable_expenses_in_month(scoped_query(VariableExpense, client_id).all(), year, month)
    return compute_expense_ratios(
        scoped_query(FixedExpense, client_id).filter_by(is_active=True).all(),
        month_variable,
        scoped_query(EmployeeCost, client_id).all(),
        total_sales(month_sales),
    )


def refresh_ingredient_costs(product, client_id):
    """Re-resolve unit price and total cost of every ingredient line of a product."""
    materials = scoped_query(RawMaterial, client_id).all()
    purchases = scoped_query(RawMaterialPurchase, client_id).all()
    costed = cost_recipe_lines(product.ingredients, materials, purchases)
    for ingredient, line in zip(product.ingredients, costed):
        ingredient.converted_quantity = line['converted_quantity']
        ingredient.unit_price = line['unit_price']
        ingredient.total_cost = line['total_cost']
        if line['unit_status'] in ('family_mismatch', 'unknown_unit'):
            logger.warning("Product %s ingredient %s: unit %r does not convert to the material unit",
                           product.id, ingredient.raw_material_id, ingredient.unit)
    return costed


def get_period_args():
    """(year, month) from the query string, defaulting to the current month."""
    default_year, default_month = current_period()
    try:
        year = int(request.args.get('year', default_year))
        month = int(request.args.get('month', default_month))
    except ValueError:
        raise ValidationError(_('Year and month must be numbers'))
    if not 1 <= month <= 12:
        raise ValidationError(_('Month must be between 1 and 12'), 'month')
    return year, month


# ----------------------------
# Payload parsing
# ----------------------------
def get_payload():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form.to_dict() if request.form else {}
    if not isinstance(payload, dict):
        raise ValidationError(_('Request body must be a JSON object'))
    return payload


def as_text(name, value):
    text = str(value).strip() if value is not None else ''
    if not text:
        raise ValidationError(_('{} is required').format(name), name)
    return text


def as_optional_text(name, value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def as_non_negative(name, value):
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(_('{} must be a number').format(name), name)
    if not math.isfinite(number):
        raise ValidationError(_('{} must be a finite number').format(name), name)
    if number < 0:
        raise ValidationError(_('{} cannot be negative').format(name), name)
    return number


def as_positive(name, value):
    number = as_non_negative(name, value)
    if number == 0:
        raise ValidationError(_('{} must be greater than zero').format(name), name)
    return number


def as_non_negative_int(name, value):
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(_('{} must be a whole number').format(name), name)
    if number < 0:
        raise ValidationError(_('{} cannot be negative').format(name), name)
    return number


def as_id(name, value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(_('{} must be an id').format(name), name)


def as_day_of_month(name, value):
    day = as_non_negative_int(name, value)
    if not 1 <= day <= 31:
        raise ValidationError(_('{} must be between 1 and 31').format(name), name)
    return day


def as_date(name, value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(_('{} must be a date (YYYY-MM-DD)').format(name), name)


def as_bool(name, value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'on', 'yes', 'sim')


def as_frequency(name, value):
    frequency = normalize_frequency(value)
    if frequency is None:
        raise ValidationError(_('Unknown frequency: {}').format(value), name)
    return frequency


def as_unit(name, value):
    return normalize_unit(as_text(name, value))


def read_fields(payload, fields, partial=False):
    """
    Validate the payload against a field table.

    Args:
        payload: Dict from the request body
        fields: {name: (parser, required)}
        partial: When True (updates), absent fields are left alone even if required

    Returns:
        Dict of parsed values for the fields present in the payload
    """
    values = {}
    for name, (parser, required) in fields.items():
        if name not in payload:
            if required and not partial:
                raise ValidationError(_('{} is required').format(name), name)
            continue
        values[name] = parser(name, payload[name])
    return values


def apply_fields(obj, values):
    for name, value in values.items():
        setattr(obj, name, value)
    return obj


def log_audit(action, target_type, target_id=None, details=None, client_id=None):
    try:
        log = AuditLog(
            client_id=client_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details
        )
        db.session.add(log)
    except SQLAlchemyError:
        # Audit logging must not interrupt the main operation
        logger.exception("Failed to log audit %s %s %s", action, target_type, target_id)
