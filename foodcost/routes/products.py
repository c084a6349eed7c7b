from flask import Blueprint, jsonify, abort
from flask_babel import gettext as _
from ..models import db, Product, ProductIngredient, RawMaterial, RawMaterialPurchase, ValidationError
from .calculations import (DEFAULT_MARGIN_PERCENTAGE, calculate_recipe_cost, cost_recipe_lines, price_product,
                           ratios_to_dict, round2)
from .utils import (get_client_id, scoped_query, get_scoped_or_404, get_payload, read_fields, apply_fields,
                    as_id, as_text, as_optional_text, as_non_negative, as_positive, as_unit, log_audit,
                    expense_ratios_for_month, get_period_args, refresh_ingredient_costs)

products_blueprint = Blueprint('products', __name__)

PRODUCT_FIELDS = {
    'code': (as_optional_text, False),
    'name': (as_text, True),
    'category': (as_optional_text, False),
    'description': (as_optional_text, False),
    'portion_yield': (as_positive, False),
    'portion_unit': (as_text, False),
    'selling_price': (as_non_negative, False),
    'margin_percentage': (as_non_negative, False),
}

INGREDIENT_FIELDS = {
    'raw_material_id': (as_id, True),
    'quantity': (as_positive, True),
    'unit': (as_unit, False),
}


def _read_ingredient(client_id, payload, partial=False):
    if not isinstance(payload, dict):
        raise ValidationError(_('Each ingredient must be an object'), 'product_ingredients')
    values = read_fields(payload, INGREDIENT_FIELDS, partial=partial)
    if 'raw_material_id' in values:
        material = get_scoped_or_404(RawMaterial, client_id, values['raw_material_id'])
        values.setdefault('unit', material.measurement_unit)
    return values


def _replace_ingredients(product, client_id, lines):
    if not isinstance(lines, list):
        raise ValidationError(_('product_ingredients must be a list'), 'product_ingredients')
    parsed = [_read_ingredient(client_id, line) for line in lines]

    product.ingredients.clear()
    for position, values in enumerate(parsed):
        product.ingredients.append(ProductIngredient(position=position, **values))


def _pricing_response(client_id, recipe_lines, selling_price, margin_percentage):
    year, month = get_period_args()
    materials = scoped_query(RawMaterial, client_id).all()
    purchases = scoped_query(RawMaterialPurchase, client_id).all()
    ratios = expense_ratios_for_month(client_id, year, month)

    lines = cost_recipe_lines(recipe_lines, materials, purchases)
    recipe_cost = sum(line['total_cost'] for line in lines)
    pricing = price_product(recipe_cost, selling_price, ratios, margin_percentage)
    pricing['lines'] = [dict(line, total_cost=round2(line['total_cost'])) for line in lines]
    pricing['expense_ratios'] = ratios_to_dict(ratios)
    pricing['year'] = year
    pricing['month'] = month
    return pricing


# ----------------------------
# Products Management
# ----------------------------
@products_blueprint.route('/products', methods=['GET'])
def products():
    client_id = get_client_id()
    rows = scoped_query(Product, client_id).order_by(Product.name).all()
    return jsonify([p.to_dict() for p in rows])


@products_blueprint.route('/products', methods=['POST'])
def add_product():
    client_id = get_client_id()
    payload = get_payload()
    values = read_fields(payload, PRODUCT_FIELDS)

    product = apply_fields(Product(client_id=client_id), values)
    _replace_ingredients(product, client_id, payload.get('product_ingredients', []))
    refresh_ingredient_costs(product, client_id)

    db.session.add(product)
    db.session.flush()
    log_audit("CREATE", "Product", product.id, f"Created product {product.name}", client_id)
    db.session.commit()
    return jsonify(product.to_dict()), 201


@products_blueprint.route('/products/<int:product_id>', methods=['GET'])
def get_product(product_id):
    client_id = get_client_id()
    return jsonify(get_scoped_or_404(Product, client_id, product_id).to_dict())


@products_blueprint.route('/products/<int:product_id>', methods=['PUT', 'PATCH'])
def edit_product(product_id):
    client_id = get_client_id()
    product = get_scoped_or_404(Product, client_id, product_id)
    payload = get_payload()

    apply_fields(product, read_fields(payload, PRODUCT_FIELDS, partial=True))
    if 'product_ingredients' in payload:
        _replace_ingredients(product, client_id, payload['product_ingredients'])
    refresh_ingredient_costs(product, client_id)

    log_audit("UPDATE", "Product", product.id, f"Updated product {product.name}", client_id)
    db.session.commit()
    return jsonify(product.to_dict())


@products_blueprint.route('/products/<int:product_id>', methods=['DELETE'])
def delete_product(product_id):
    client_id = get_client_id()
    product = get_scoped_or_404(Product, client_id, product_id)
    db.session.delete(product)
    log_audit("DELETE", "Product", product_id, f"Deleted product {product.name}", client_id)
    db.session.commit()
    return '', 204


# ----------------------------
# Ingredient lines
# ----------------------------
@products_blueprint.route('/products/<int:product_id>/ingredients', methods=['POST'])
def add_ingredient(product_id):
    client_id = get_client_id()
    product = get_scoped_or_404(Product, client_id, product_id)
    values = _read_ingredient(client_id, get_payload())

    product.ingredients.append(ProductIngredient(position=len(product.ingredients), **values))
    refresh_ingredient_costs(product, client_id)
    log_audit("UPDATE", "Product", product.id, f"Added ingredient {values['raw_material_id']}", client_id)
    db.session.commit()
    return jsonify(product.ingredients[-1].to_dict()), 201


def _get_ingredient(client_id, ingredient_id):
    ingredient = db.get_or_404(ProductIngredient, ingredient_id)
    if ingredient.product.client_id != client_id:
        abort(404)
    return ingredient


@products_blueprint.route('/ingredients/<int:ingredient_id>', methods=['PUT', 'PATCH'])
def edit_ingredient(ingredient_id):
    client_id = get_client_id()
    ingredient = _get_ingredient(client_id, ingredient_id)
    apply_fields(ingredient, _read_ingredient(client_id, get_payload(), partial=True))

    refresh_ingredient_costs(ingredient.product, client_id)
    log_audit("UPDATE", "ProductIngredient", ingredient.id, "Updated ingredient", client_id)
    db.session.commit()
    return jsonify(ingredient.to_dict())


@products_blueprint.route('/ingredients/<int:ingredient_id>', methods=['DELETE'])
def delete_ingredient(ingredient_id):
    client_id = get_client_id()
    ingredient = _get_ingredient(client_id, ingredient_id)
    product = ingredient.product

    product.ingredients.remove(ingredient)
    for position, remaining in enumerate(product.ingredients):
        remaining.position = position
    log_audit("DELETE", "ProductIngredient", ingredient_id, "Deleted ingredient", client_id)
    db.session.commit()
    return '', 204


# ----------------------------
# Pricing
# ----------------------------
@products_blueprint.route('/products/<int:product_id>/pricing', methods=['GET'])
def product_pricing(product_id):
    """Suggested price and profit of a stored product against the month's expense ratios."""
    client_id = get_client_id()
    product = get_scoped_or_404(Product, client_id, product_id)
    pricing = _pricing_response(client_id, product.ingredients, product.selling_price,
                                product.margin_percentage)
    pricing['product_id'] = product.id
    return jsonify(pricing)


@products_blueprint.route('/products/pricing-preview', methods=['POST'])
def pricing_preview():
    """Same as product_pricing for a recipe that has not been saved yet."""
    client_id = get_client_id()
    payload = get_payload()
    lines = [_read_ingredient(client_id, line) for line in payload.get('product_ingredients', [])]
    selling_price = as_non_negative('selling_price', payload.get('selling_price', 0))
    margin = as_non_negative('margin_percentage', payload.get('margin_percentage', DEFAULT_MARGIN_PERCENTAGE))
    return jsonify(_pricing_response(client_id, lines, selling_price, margin))


@products_blueprint.route('/products/recipe-costs', methods=['GET'])
def recipe_costs():
    """Recipe cost of every product, re-resolved from the latest purchase prices."""
    client_id = get_client_id()
    materials = scoped_query(RawMaterial, client_id).all()
    purchases = scoped_query(RawMaterialPurchase, client_id).all()
    return jsonify([
        {
            'product_id': product.id,
            'name': product.name,
            'recipe_cost': round2(calculate_recipe_cost(product.ingredients, materials, purchases)),
        }
        for product in scoped_query(Product, client_id).order_by(Product.name).all()
    ])
