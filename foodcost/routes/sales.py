import calendar
import logging
import pandas as pd
from flask import Blueprint, jsonify, request
from flask_babel import gettext as _
from werkzeug.utils import secure_filename
from ..models import db, Sale, ValidationError
from .calculations import average_ticket, filter_by_year, sales_in_month, total_orders, total_sales, round2
from .utils import (get_client_id, scoped_query, get_scoped_or_404, get_payload, read_fields, apply_fields,
                    as_date, as_non_negative, as_non_negative_int, as_optional_text, get_period_args, log_audit)

logger = logging.getLogger(__name__)

sales_blueprint = Blueprint('sales', __name__)

SALE_FIELDS = {
    'sale_date': (as_date, True),
    'total_sales': (as_non_negative, True),
    'number_of_orders': (as_non_negative_int, False),
    'average_ticket': (as_non_negative, False),
    'notes': (as_optional_text, False),
}

IMPORT_COLUMNS = ('sale_date', 'total_sales', 'number_of_orders')


def _derive_average_ticket(sale, values):
    # An explicitly sent ticket is kept as stored, otherwise it follows total / orders
    if 'average_ticket' not in values:
        sale.average_ticket = round2(average_ticket(sale.total_sales or 0, sale.number_of_orders or 0))


def process_sales_dataframe(df):
    """
    Turn an uploaded sheet into sale payloads.

    Expected header columns: sale_date, total_sales, number_of_orders and,
    optionally, notes. Returns (rows, skipped_rows).
    """
    columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in IMPORT_COLUMNS if c not in columns]
    if missing:
        raise ValidationError(_('Missing columns: {}').format(', '.join(missing)), 'file')
    df.columns = columns

    rows = []
    skipped_rows = []
    for index, row in df.iterrows():
        row_num = index + 2  # 1-indexed plus header

        if pd.isna(row['sale_date']) or pd.isna(row['total_sales']):
            skipped_rows.append({'row': row_num, 'reason': _('Empty date or total')})
            continue

        try:
            sale_date = pd.Timestamp(row['sale_date']).date()
        except (ValueError, TypeError):
            skipped_rows.append({'row': row_num, 'reason': _('Invalid date')})
            continue

        payload = {
            'sale_date': sale_date,
            'total_sales': row['total_sales'],
            'number_of_orders': 0 if pd.isna(row['number_of_orders']) else row['number_of_orders'],
        }
        if 'notes' in columns and not pd.isna(row['notes']):
            payload['notes'] = str(row['notes'])

        try:
            rows.append(read_fields(payload, SALE_FIELDS))
        except ValidationError as e:
            skipped_rows.append({'row': row_num, 'reason': e.message})
    return rows, skipped_rows


# ----------------------------
# Sales Management
# ----------------------------
@sales_blueprint.route('/sales', methods=['GET'])
def sales():
    client_id = get_client_id()
    rows = scoped_query(Sale, client_id).order_by(Sale.sale_date.desc()).all()
    return jsonify([s.to_dict() for s in rows])


@sales_blueprint.route('/sales/summary', methods=['GET'])
def sales_summary():
    client_id = get_client_id()
    year, month = get_period_args()
    rows = scoped_query(Sale, client_id).all()
    month_rows = sales_in_month(rows, year, month)
    year_rows = filter_by_year(rows, year, 'sale_date')

    month_total, month_orders = total_sales(month_rows), total_orders(month_rows)
    year_total, year_orders = total_sales(year_rows), total_orders(year_rows)

    by_weekday = {}
    for sale in rows:
        day = calendar.day_name[sale.sale_date.weekday()]
        by_weekday[day] = by_weekday.get(day, 0) + sale.total_sales
    top_weekdays = sorted(by_weekday.items(), key=lambda item: item[1], reverse=True)[:3]

    return jsonify({
        'year': year,
        'month': month,
        'total_month': round2(month_total),
        'total_year': round2(year_total),
        'orders_month': month_orders,
        'orders_year': year_orders,
        'average_ticket_month': round2(average_ticket(month_total, month_orders)),
        'average_ticket_year': round2(average_ticket(year_total, year_orders)),
        'top_weekdays': [{'weekday': day, 'total_sales': round2(total)} for day, total in top_weekdays],
    })


@sales_blueprint.route('/sales', methods=['POST'])
def add_sale():
    client_id = get_client_id()
    values = read_fields(get_payload(), SALE_FIELDS)

    sale = apply_fields(Sale(client_id=client_id, number_of_orders=0), values)
    _derive_average_ticket(sale, values)
    db.session.add(sale)
    db.session.flush()
    log_audit("CREATE", "Sale", sale.id, f"Recorded sales of {sale.sale_date}", client_id)
    db.session.commit()
    return jsonify(sale.to_dict()), 201


@sales_blueprint.route('/sales/import', methods=['POST'])
def import_sales():
    """Bulk-create sales from an uploaded CSV or Excel sheet."""
    client_id = get_client_id()
    file = request.files.get('file')
    if not file or not file.filename:
        raise ValidationError(_('No file uploaded'), 'file')

    filename = secure_filename(file.filename).lower()
    if not filename.endswith(('.csv', '.xlsx', '.xls')):
        raise ValidationError(_('Unsupported file type, use .csv or .xlsx'), 'file')

    try:
        if filename.endswith('.csv'):
            df = pd.read_csv(file)
        else:
            df = pd.read_excel(file)
    except (ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.warning("Could not read sales upload %s: %s", filename, e)
        raise ValidationError(_('Could not read file'), 'file')

    rows, skipped_rows = process_sales_dataframe(df)
    for values in rows:
        sale = apply_fields(Sale(client_id=client_id, number_of_orders=0), values)
        _derive_average_ticket(sale, values)
        db.session.add(sale)

    log_audit("IMPORT", "Sale", None, f"Imported {len(rows)} sales from {filename}", client_id)
    db.session.commit()
    logger.info("Imported %d sales for client %s (%d skipped)", len(rows), client_id, len(skipped_rows))
    return jsonify({'imported': len(rows), 'skipped': skipped_rows}), 201


@sales_blueprint.route('/sales/<int:sale_id>', methods=['PUT', 'PATCH'])
def edit_sale(sale_id):
    client_id = get_client_id()
    sale = get_scoped_or_404(Sale, client_id, sale_id)
    values = read_fields(get_payload(), SALE_FIELDS, partial=True)
    apply_fields(sale, values)
    _derive_average_ticket(sale, values)
    log_audit("UPDATE", "Sale", sale.id, f"Updated sales of {sale.sale_date}", client_id)
    db.session.commit()
    return jsonify(sale.to_dict())


@sales_blueprint.route('/sales/<int:sale_id>', methods=['DELETE'])
def delete_sale(sale_id):
    client_id = get_client_id()
    sale = get_scoped_or_404(Sale, client_id, sale_id)
    db.session.delete(sale)
    log_audit("DELETE", "Sale", sale_id, f"Deleted sales of {sale.sale_date}", client_id)
    db.session.commit()
    return '', 204
