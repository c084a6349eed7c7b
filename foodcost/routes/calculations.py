"""
Cost, expense and pricing calculations.

Everything here works on plain lists of records (ORM rows or dicts) handed
in by the routes and never touches the database session, so the same
functions serve the dashboard, the product form and the tests.
"""
import logging
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, localcontext
from ..models import EMPLOYEE_BURDEN_FIELDS

logger = logging.getLogger(__name__)

DEFAULT_MARGIN_PERCENTAGE = 30.0
LOW_MARGIN_THRESHOLD = 40.0
TOP_PRODUCTS_LIMIT = 5
RECENT_ITEMS_LIMIT = 5

# Share of implied unit sales used to estimate CMV when no per-product
# sales ledger exists
CMV_SALES_SAMPLING_FACTOR = 0.1

# Estimated revenue = this factor * (fixed + variable) when a month has no sales
ESTIMATED_REVENUE_FACTOR = 2

# Powers of ten relative to the smallest unit of each family
UNIT_FAMILIES = {
    'mass': {'kg': 6, 'g': 3, 'mg': 0},
    'volume': {'l': 3, 'cl': 1, 'ml': 0},
    'length': {'m': 3, 'cm': 1, 'mm': 0},
}
COUNT_UNITS = ('un', 'und', 'unit', 'unidade', 'piece', 'pc', 'porção', 'porções', 'dz', 'cx')

FREQUENCY_DIVISORS = {
    'monthly': 1,
    'quarterly': 3,
    'semiannual': 6,
    'annual': 12,
}
ANNUALIZATION_FACTORS = {
    'monthly': 12,
    'quarterly': 4,
    'semiannual': 2,
    'annual': 1,
}
FREQUENCY_ALIASES = {
    'mensal': 'monthly',
    'trimestral': 'quarterly',
    'semestral': 'semiannual',
    'anual': 'annual',
}


def round2(value):
    """Round a currency amount to cents, half-up."""
    if value is None:
        return 0.0
    amount = Decimal(str(value))
    if not amount.is_finite():
        return float(amount)
    with localcontext() as ctx:
        # Wide enough for any float magnitude plus the two cents digits
        ctx.prec = 400
        quantized = amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    return float(quantized) + 0.0  # drop negative zero


def _field(record, name, default=None):
    if isinstance(record, dict):
        value = record.get(name, default)
    else:
        value = getattr(record, name, default)
    return default if value is None else value


def _as_date(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _as_datetime(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


# ----------------------------
# Unit conversion
# ----------------------------
def normalize_unit(unit):
    return (unit or '').strip().lower()


def unit_family(unit):
    """Return 'mass', 'volume', 'length', 'count' or None for an unknown token."""
    token = normalize_unit(unit)
    for family, units in UNIT_FAMILIES.items():
        if token in units:
            return family
    if token in COUNT_UNITS:
        return 'count'
    return None


def unit_conversion_status(from_unit, to_unit):
    """
    Diagnose a conversion without performing it.

    Returns one of:
        'same'             - identical units, nothing to do
        'converted'        - same family, a fixed factor applies
        'not_convertible'  - two different count tokens
        'family_mismatch'  - units from different families (e.g. kg -> l)
        'unknown_unit'     - at least one token is not a known unit
    """
    source, target = normalize_unit(from_unit), normalize_unit(to_unit)
    if source == target:
        return 'same'

    source_family, target_family = unit_family(source), unit_family(target)
    if source_family is None or target_family is None:
        return 'unknown_unit'
    if source_family != target_family:
        return 'family_mismatch'
    if source_family == 'count':
        return 'not_convertible'
    return 'converted'


def convert_unit(value, from_unit, to_unit):
    """
    Convert a quantity between units of the same family.

    Conversions across families (or involving unknown units) are not
    defined; the value is passed through unchanged and a warning is logged.
    It never raises.
    """
    status = unit_conversion_status(from_unit, to_unit)
    if status == 'same':
        return value
    if status == 'converted':
        units = UNIT_FAMILIES[unit_family(from_unit)]
        exponent = units[normalize_unit(from_unit)] - units[normalize_unit(to_unit)]
        if exponent >= 0:
            return value * (10 ** exponent)
        return value / (10 ** -exponent)

    if status == 'not_convertible':
        logger.debug("No conversion between count units %r and %r", from_unit, to_unit)
    else:
        logger.warning("Cannot convert %s from %r to %r (%s); using the value as entered",
                       value, from_unit, to_unit, status)
    return value


# ----------------------------
# Recipe costing
# ----------------------------
def latest_purchase(purchases, raw_material_id):
    """The most recent purchase of a material by purchase date, or None."""
    candidates = [p for p in purchases if _field(p, 'raw_material_id') == raw_material_id]
    if not candidates:
        return None

    def sort_key(purchase):
        return (
            _as_date(_field(purchase, 'purchase_date')) or date.min,
            _as_datetime(_field(purchase, 'created_at')) or datetime.min,
            _field(purchase, 'id', 0),
        )

    return max(candidates, key=sort_key)


def latest_unit_price(purchases, raw_material_id):
    """
    Current unit price of a material: the price paid on its latest purchase.

    Last price wins, no weighted average. A material that was never
    purchased is priced at 0.
    """
    purchase = latest_purchase(purchases, raw_material_id)
    if purchase is None:
        logger.debug("No purchase history for raw material %s; pricing at 0", raw_material_id)
        return 0.0
    return float(_field(purchase, 'unit_price', 0.0))


def cost_ingredient_line(quantity, unit, material, purchases):
    """
    Resolve price and cost of a single ingredient line.

    Args:
        quantity: Quantity as entered
        unit: Unit chosen at entry time
        material: RawMaterial (or dict) the line refers to, may be None
        purchases: Purchase records to resolve the unit price from

    Returns:
        Dict with converted_quantity, unit_price, total_cost,
        price_missing and unit_status
    """
    quantity = float(quantity or 0)
    if material is None:
        return {
            'converted_quantity': quantity,
            'unit_price': 0.0,
            'total_cost': 0.0,
            'price_missing': True,
            'unit_status': 'unknown_unit',
        }

    base_unit = _field(material, 'measurement_unit', '')
    entry_unit = unit or base_unit
    converted_quantity = convert_unit(quantity, entry_unit, base_unit)
    material_id = _field(material, 'id')
    unit_price = latest_unit_price(purchases, material_id)

    return {
        'converted_quantity': converted_quantity,
        'unit_price': unit_price,
        'total_cost': converted_quantity * unit_price,
        'price_missing': latest_purchase(purchases, material_id) is None,
        'unit_status': unit_conversion_status(entry_unit, base_unit),
    }


def cost_recipe_lines(lines, materials, purchases):
    """Cost every ingredient line, keeping the input order."""
    materials_by_id = {_field(m, 'id'): m for m in materials}
    costed = []
    for line in lines:
        material_id = _field(line, 'raw_material_id')
        result = cost_ingredient_line(
            _field(line, 'quantity', 0),
            _field(line, 'unit'),
            materials_by_id.get(material_id),
            purchases,
        )
        result['raw_material_id'] = material_id
        result['quantity'] = _field(line, 'quantity', 0)
        result['unit'] = _field(line, 'unit')
        costed.append(result)
    return costed


def calculate_recipe_cost(lines, materials, purchases):
    return sum(line['total_cost'] for line in cost_recipe_lines(lines, materials, purchases))


def product_ingredient_lines(product):
    if isinstance(product, dict):
        return product.get('product_ingredients') or product.get('ingredients') or []
    return list(getattr(product, 'ingredients', None) or [])


def selectable_raw_materials(materials, purchases):
    """Materials that can be picked as ingredients: those with purchase history."""
    purchased = {_field(p, 'raw_material_id') for p in purchases}
    return [m for m in materials if _field(m, 'id') in purchased]


# ----------------------------
# Period filters
# ----------------------------
def current_period(today=None):
    today = today or date.today()
    return today.year, today.month


def filter_by_month(records, year, month, date_attr):
    """Records whose civil date falls in the given year and month (1-12)."""
    selected = []
    for record in records:
        record_date = _as_date(_field(record, date_attr))
        if record_date and record_date.year == year and record_date.month == month:
            selected.append(record)
    return selected


def filter_by_year(records, year, date_attr):
    selected = []
    for record in records:
        record_date = _as_date(_field(record, date_attr))
        if record_date and record_date.year == year:
            selected.append(record)
    return selected


def sales_in_month(sales, year, month):
    return filter_by_month(sales, year, month, 'sale_date')


def variable_expenses_in_month(expenses, year, month):
    return filter_by_month(expenses, year, month, 'expense_date')


def total_sales(sales):
    return sum(float(_field(s, 'total_sales', 0)) for s in sales)


def total_orders(sales):
    return sum(int(_field(s, 'number_of_orders', 0)) for s in sales)


def average_ticket(total, orders):
    return total / orders if orders > 0 else 0.0


# ----------------------------
# Periodic expenses
# ----------------------------
def normalize_frequency(frequency):
    """Canonical frequency name, or None when it is not one we know."""
    token = (frequency or '').strip().lower()
    token = FREQUENCY_ALIASES.get(token, token)
    return token if token in FREQUENCY_DIVISORS else None


def monthly_equivalent(expense):
    """Monthly share of a fixed expense. Inactive expenses count as 0."""
    if not _field(expense, 'is_active', True):
        return 0.0
    frequency = normalize_frequency(_field(expense, 'frequency')) or 'monthly'
    return float(_field(expense, 'amount', 0)) / FREQUENCY_DIVISORS[frequency]


def annualization_factor(frequency):
    return ANNUALIZATION_FACTORS[normalize_frequency(frequency) or 'monthly']


def annual_equivalent(expense):
    """Yearly cost of a fixed expense (amount times occurrences per year)."""
    if not _field(expense, 'is_active', True):
        return 0.0
    return float(_field(expense, 'amount', 0)) * annualization_factor(_field(expense, 'frequency'))


def total_monthly_fixed(expenses):
    return sum(monthly_equivalent(e) for e in expenses if _field(e, 'is_active', True))


def total_annual_fixed(expenses):
    return sum(annual_equivalent(e) for e in expenses if _field(e, 'is_active', True))


# ----------------------------
# Employee burden and expense ratios
# ----------------------------
def employee_monthly_burden(employee):
    # hourly_cost is informational and stays out of the sum
    return sum(float(_field(employee, field, 0)) for field in EMPLOYEE_BURDEN_FIELDS)


def total_employee_burden(employees):
    return sum(employee_monthly_burden(e) for e in employees)


def compute_expense_ratios(fixed_expenses, variable_expenses, employee_costs, monthly_revenue):
    """
    Expense percentages used for pricing, plus the monthly operating cost.

    variable_expenses must already be restricted to the target month.
    Employee burden is part of CMO but not of the pricing percentages.
    When the month has no revenue yet, twice the fixed + variable total is
    used as an estimated revenue and used_estimate is set.
    """
    monthly_fixed = total_monthly_fixed(fixed_expenses)
    monthly_variable = sum(float(_field(e, 'amount', 0)) for e in variable_expenses)
    monthly_employee_burden = total_employee_burden(employee_costs)
    monthly_revenue = float(monthly_revenue or 0)
    pricing_expenses = monthly_fixed + monthly_variable

    used_estimate = False
    if monthly_revenue > 0:
        denominator = monthly_revenue
    elif pricing_expenses > 0:
        denominator = ESTIMATED_REVENUE_FACTOR * pricing_expenses
        used_estimate = True
    else:
        denominator = 0.0

    if denominator > 0:
        fixed_pct = monthly_fixed / denominator * 100
        variable_pct = monthly_variable / denominator * 100
    else:
        fixed_pct = variable_pct = 0.0

    return {
        'monthly_revenue': monthly_revenue,
        'estimated_revenue': denominator if used_estimate else None,
        'monthly_fixed': monthly_fixed,
        'monthly_variable': monthly_variable,
        'monthly_employee_burden': monthly_employee_burden,
        'cmo': pricing_expenses + monthly_employee_burden,
        'fixed_pct': fixed_pct,
        'variable_pct': variable_pct,
        'total_pct': fixed_pct + variable_pct,
        'used_estimate': used_estimate,
    }


# ----------------------------
# Pricing
# ----------------------------
def base_price(recipe_cost, total_expense_pct):
    """
    Price that covers the recipe cost and the expense share, with no margin.

    An expense share of 100% or more leaves nothing to divide by; the price
    saturates at the recipe cost instead.
    """
    if total_expense_pct >= 100:
        return float(recipe_cost)
    return recipe_cost / (1 - total_expense_pct / 100.0)


def suggested_price(recipe_cost, total_expense_pct, margin_pct=DEFAULT_MARGIN_PERCENTAGE):
    if not recipe_cost:
        return 0.0
    return round2(base_price(recipe_cost, total_expense_pct) * (1 + margin_pct / 100.0))


def calculate_profit(selling_price, recipe_cost, total_expense_pct):
    """Profit of a sale at the given price. Negative means a loss."""
    expense_cost = selling_price * total_expense_pct / 100.0
    return round2(selling_price - recipe_cost - expense_cost)


def profit_margin_pct(selling_price, recipe_cost, total_expense_pct):
    """Realized margin as a percentage of the selling price, None without a price."""
    if not selling_price or selling_price <= 0:
        return None
    expense_cost = selling_price * total_expense_pct / 100.0
    return (selling_price - recipe_cost - expense_cost) / selling_price * 100


def price_product(recipe_cost, selling_price, ratios, margin_pct=DEFAULT_MARGIN_PERCENTAGE):
    total_pct = ratios['total_pct']
    return {
        'recipe_cost': round2(recipe_cost),
        'base_price': round2(base_price(recipe_cost, total_pct)) if recipe_cost else 0.0,
        'suggested_price': suggested_price(recipe_cost, total_pct, margin_pct),
        'selling_price': round2(selling_price),
        'expense_cost': round2(selling_price * total_pct / 100.0),
        'profit': calculate_profit(selling_price, recipe_cost, total_pct),
        'margin_percentage': margin_pct,
        'expense_pct_saturated': total_pct >= 100,
        'used_estimate': ratios['used_estimate'],
    }


# ----------------------------
# Dashboard
# ----------------------------
def estimate_cmv(product_costs, monthly_revenue):
    """
    Estimated cost of goods sold for the month.

    product_costs is a list of (selling_price, recipe_cost) pairs. With no
    per-product sales ledger, each product is assumed to sell 10% of the
    units the whole month's revenue would buy at its price.
    """
    cmv = 0.0
    for selling_price, recipe_cost in product_costs:
        if selling_price and selling_price > 0 and recipe_cost:
            estimated_units = monthly_revenue / selling_price * CMV_SALES_SAMPLING_FACTOR
            cmv += recipe_cost * estimated_units
    return cmv


def break_even_point(cmo, gross_margin_pct):
    """Revenue at which the operating margin is zero, None when not computable."""
    if gross_margin_pct <= 0:
        return None
    return cmo / (gross_margin_pct / 100.0)


def low_stock_materials(materials):
    return [m for m in materials if float(_field(m, 'current_stock', 0)) <= float(_field(m, 'minimum_stock', 0))]


def inventory_valuation(materials, purchases):
    return sum(
        float(_field(m, 'current_stock', 0)) * latest_unit_price(purchases, _field(m, 'id'))
        for m in materials
    )


def rank_products_by_margin(product_margins):
    """
    Split (product, margin_pct) pairs into the best performers and the ones
    below LOW_MARGIN_THRESHOLD. Products without a margin are skipped.
    """
    priced = [(p, margin) for p, margin in product_margins if margin is not None]
    top = sorted([pm for pm in priced if pm[1] > 0], key=lambda pm: pm[1], reverse=True)[:TOP_PRODUCTS_LIMIT]
    low = sorted([pm for pm in priced if pm[1] < LOW_MARGIN_THRESHOLD], key=lambda pm: pm[1])
    return top, low


def _product_summary(product, recipe_cost, margin):
    return {
        'id': _field(product, 'id'),
        'name': _field(product, 'name'),
        'category': _field(product, 'category'),
        'selling_price': round2(_field(product, 'selling_price', 0)),
        'recipe_cost': round2(recipe_cost),
        'margin_pct': round2(margin) if margin is not None else None,
    }


def build_dashboard(snapshot, year, month):
    """
    Headline metrics for one tenant and one month.

    snapshot holds the tenant's full lists under the keys products,
    raw_materials, purchases, fixed_expenses, variable_expenses,
    employee_costs and sales.
    """
    products = snapshot.get('products', [])
    materials = snapshot.get('raw_materials', [])
    purchases = snapshot.get('purchases', [])
    sales = snapshot.get('sales', [])

    month_sales = sales_in_month(sales, year, month)
    year_sales = filter_by_year(sales, year, 'sale_date')
    revenue = total_sales(month_sales)
    orders = total_orders(month_sales)

    ratios = compute_expense_ratios(
        snapshot.get('fixed_expenses', []),
        variable_expenses_in_month(snapshot.get('variable_expenses', []), year, month),
        snapshot.get('employee_costs', []),
        revenue,
    )

    product_costs = []
    product_margins = []
    summaries = {}
    for product in products:
        recipe_cost = calculate_recipe_cost(product_ingredient_lines(product), materials, purchases)
        selling_price = float(_field(product, 'selling_price', 0))
        margin = profit_margin_pct(selling_price, recipe_cost, ratios['total_pct'])
        product_costs.append((selling_price, recipe_cost))
        product_margins.append((product, margin))
        summaries[id(product)] = _product_summary(product, recipe_cost, margin)

    cmv = estimate_cmv(product_costs, revenue)
    cmo = ratios['cmo']
    gross_margin = revenue - cmv
    gross_margin_pct = gross_margin / revenue * 100 if revenue > 0 else 0.0
    operating_margin = gross_margin - cmo
    operating_margin_pct = operating_margin / revenue * 100 if revenue > 0 else 0.0
    break_even = break_even_point(cmo, gross_margin_pct)

    top, low = rank_products_by_margin(product_margins)

    categories = {}
    for product in products:
        category = _field(product, 'category', '')
        categories[category] = categories.get(category, 0) + 1

    recent_sales = sorted(
        [s for s in sales if _as_date(_field(s, 'sale_date'))],
        key=lambda s: _as_date(_field(s, 'sale_date')),
        reverse=True,
    )[:RECENT_ITEMS_LIMIT]
    recent_products = sorted(
        [p for p in products if _field(p, 'last_modified') or _field(p, 'created_at')],
        key=lambda p: _as_datetime(_field(p, 'last_modified') or _field(p, 'created_at')) or datetime.min,
        reverse=True,
    )[:RECENT_ITEMS_LIMIT]

    return {
        'year': year,
        'month': month,
        'revenue': {
            'month': round2(revenue),
            'year': round2(total_sales(year_sales)),
            'orders': orders,
            'average_ticket': round2(average_ticket(revenue, orders)),
        },
        'cmv': round2(cmv),
        'cmv_pct': round2(cmv / revenue * 100) if revenue > 0 else 0.0,
        'cmo': round2(cmo),
        'cmo_pct': round2(cmo / revenue * 100) if revenue > 0 else 0.0,
        'cmo_breakdown': {
            'fixed': round2(ratios['monthly_fixed']),
            'variable': round2(ratios['monthly_variable']),
            'employee_burden': round2(ratios['monthly_employee_burden']),
        },
        'gross_margin': round2(gross_margin),
        'gross_margin_pct': round2(gross_margin_pct),
        'operating_margin': round2(operating_margin),
        'operating_margin_pct': round2(operating_margin_pct),
        'profitability_pct': round2(operating_margin_pct),
        'break_even_point': round2(break_even) if break_even is not None else None,
        'break_even_computable': break_even is not None,
        'expense_ratios': ratios_to_dict(ratios),
        'top_margin_products': [summaries[id(p)] for p, _ in top],
        'low_margin_products': [summaries[id(p)] for p, _ in low],
        'low_stock_materials': [
            {
                'id': _field(m, 'id'),
                'name': _field(m, 'name'),
                'current_stock': _field(m, 'current_stock', 0),
                'minimum_stock': _field(m, 'minimum_stock', 0),
                'measurement_unit': _field(m, 'measurement_unit'),
            }
            for m in low_stock_materials(materials)
        ],
        'inventory_value': round2(inventory_valuation(materials, purchases)),
        'products_by_category': categories,
        'recent_sales': [
            {
                'id': _field(s, 'id'),
                'sale_date': _as_date(_field(s, 'sale_date')).isoformat(),
                'total_sales': round2(_field(s, 'total_sales', 0)),
                'number_of_orders': _field(s, 'number_of_orders', 0),
            }
            for s in recent_sales
        ],
        'recent_products': [summaries[id(p)] for p in recent_products],
    }


def ratios_to_dict(ratios):
    """Rounded copy of compute_expense_ratios() output for JSON responses."""
    return {
        'monthly_revenue': round2(ratios['monthly_revenue']),
        'estimated_revenue': round2(ratios['estimated_revenue']) if ratios['estimated_revenue'] is not None else None,
        'monthly_fixed': round2(ratios['monthly_fixed']),
        'monthly_variable': round2(ratios['monthly_variable']),
        'monthly_employee_burden': round2(ratios['monthly_employee_burden']),
        'cmo': round2(ratios['cmo']),
        'fixed_pct': round2(ratios['fixed_pct']),
        'variable_pct': round2(ratios['variable_pct']),
        'total_pct': round2(ratios['total_pct']),
        'used_estimate': ratios['used_estimate'],
    }
