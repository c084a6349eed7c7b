from flask import Blueprint, jsonify
from flask_babel import gettext as _
from ..models import db, RawMaterial, RawMaterialPurchase, ProductIngredient, ValidationError
from .calculations import latest_unit_price, selectable_raw_materials, low_stock_materials
from .utils import (get_client_id, scoped_query, get_scoped_or_404, get_payload, read_fields, apply_fields,
                    as_id, as_text, as_optional_text, as_non_negative, as_positive, as_date, as_unit,
                    log_audit, units_list)

raw_materials_blueprint = Blueprint('raw_materials', __name__)

RAW_MATERIAL_FIELDS = {
    'code': (as_optional_text, False),
    'name': (as_text, True),
    'category': (as_optional_text, False),
    'measurement_unit': (as_unit, True),
    'supplier': (as_optional_text, False),
    'minimum_stock': (as_non_negative, False),
    'current_stock': (as_non_negative, False),
}

PURCHASE_FIELDS = {
    'raw_material_id': (as_id, True),
    'quantity': (as_positive, True),
    'unit_price': (as_non_negative, True),
    'purchase_date': (as_date, True),
    'supplier': (as_optional_text, False),
    'payment_method': (as_optional_text, False),
    'receipt': (as_optional_text, False),
    'notes': (as_optional_text, False),
}


def _materials_with_prices(client_id, materials):
    purchases = scoped_query(RawMaterialPurchase, client_id).all()
    return [m.to_dict(unit_price=latest_unit_price(purchases, m.id)) for m in materials]


# ----------------------------
# Raw Materials Management
# ----------------------------
@raw_materials_blueprint.route('/raw-materials', methods=['GET'])
def raw_materials():
    client_id = get_client_id()
    materials = scoped_query(RawMaterial, client_id).order_by(RawMaterial.name).all()
    return jsonify(_materials_with_prices(client_id, materials))


@raw_materials_blueprint.route('/raw-materials/units', methods=['GET'])
def raw_material_units():
    return jsonify(units_list)


@raw_materials_blueprint.route('/raw-materials/selectable', methods=['GET'])
def selectable_materials():
    """Materials offered as ingredients: only those with at least one purchase."""
    client_id = get_client_id()
    materials = scoped_query(RawMaterial, client_id).order_by(RawMaterial.name).all()
    purchases = scoped_query(RawMaterialPurchase, client_id).all()
    return jsonify([m.to_dict(unit_price=latest_unit_price(purchases, m.id))
                    for m in selectable_raw_materials(materials, purchases)])


@raw_materials_blueprint.route('/raw-materials/low-stock', methods=['GET'])
def low_stock():
    client_id = get_client_id()
    materials = scoped_query(RawMaterial, client_id).order_by(RawMaterial.name).all()
    return jsonify(_materials_with_prices(client_id, low_stock_materials(materials)))


@raw_materials_blueprint.route('/raw-materials', methods=['POST'])
def add_raw_material():
    client_id = get_client_id()
    values = read_fields(get_payload(), RAW_MATERIAL_FIELDS)

    material = apply_fields(RawMaterial(client_id=client_id), values)
    db.session.add(material)
    db.session.flush()
    log_audit("CREATE", "RawMaterial", material.id, f"Created raw material {material.name}", client_id)
    db.session.commit()
    return jsonify(material.to_dict(unit_price=0.0)), 201


@raw_materials_blueprint.route('/raw-materials/<int:material_id>', methods=['GET'])
def get_raw_material(material_id):
    client_id = get_client_id()
    material = get_scoped_or_404(RawMaterial, client_id, material_id)
    return jsonify(_materials_with_prices(client_id, [material])[0])


@raw_materials_blueprint.route('/raw-materials/<int:material_id>', methods=['PUT', 'PATCH'])
def edit_raw_material(material_id):
    client_id = get_client_id()
    material = get_scoped_or_404(RawMaterial, client_id, material_id)
    apply_fields(material, read_fields(get_payload(), RAW_MATERIAL_FIELDS, partial=True))
    log_audit("UPDATE", "RawMaterial", material.id, f"Updated raw material {material.name}", client_id)
    db.session.commit()
    return jsonify(_materials_with_prices(client_id, [material])[0])


@raw_materials_blueprint.route('/raw-materials/<int:material_id>', methods=['DELETE'])
def delete_raw_material(material_id):
    client_id = get_client_id()
    material = get_scoped_or_404(RawMaterial, client_id, material_id)

    usage = ProductIngredient.query.filter_by(raw_material_id=material.id).count()
    if usage:
        raise ValidationError(_('Raw material is used in {} product ingredient(s)').format(usage))

    db.session.delete(material)
    log_audit("DELETE", "RawMaterial", material_id, f"Deleted raw material {material.name}", client_id)
    db.session.commit()
    return '', 204


# ----------------------------
# Purchases
# ----------------------------
@raw_materials_blueprint.route('/raw-material-purchases', methods=['GET'])
def purchases():
    client_id = get_client_id()
    rows = scoped_query(RawMaterialPurchase, client_id).order_by(
        RawMaterialPurchase.purchase_date.desc(), RawMaterialPurchase.id.desc()).all()
    return jsonify([p.to_dict() for p in rows])


@raw_materials_blueprint.route('/raw-material-purchases', methods=['POST'])
def add_purchase():
    client_id = get_client_id()
    values = read_fields(get_payload(), PURCHASE_FIELDS)
    get_scoped_or_404(RawMaterial, client_id, values['raw_material_id'])

    purchase = apply_fields(RawMaterialPurchase(client_id=client_id), values)
    purchase.total_cost = purchase.quantity * purchase.unit_price
    db.session.add(purchase)
    db.session.flush()
    log_audit("CREATE", "RawMaterialPurchase", purchase.id,
              f"Purchased {purchase.quantity} of material {purchase.raw_material_id} at {purchase.unit_price}", client_id)
    db.session.commit()
    return jsonify(purchase.to_dict()), 201


@raw_materials_blueprint.route('/raw-material-purchases/<int:purchase_id>', methods=['PUT', 'PATCH'])
def edit_purchase(purchase_id):
    client_id = get_client_id()
    purchase = get_scoped_or_404(RawMaterialPurchase, client_id, purchase_id)
    values = read_fields(get_payload(), PURCHASE_FIELDS, partial=True)
    if 'raw_material_id' in values:
        get_scoped_or_404(RawMaterial, client_id, values['raw_material_id'])

    apply_fields(purchase, values)
    purchase.total_cost = purchase.quantity * purchase.unit_price
    log_audit("UPDATE", "RawMaterialPurchase", purchase.id, "Updated purchase", client_id)
    db.session.commit()
    return jsonify(purchase.to_dict())


@raw_materials_blueprint.route('/raw-material-purchases/<int:purchase_id>', methods=['DELETE'])
def delete_purchase(purchase_id):
    client_id = get_client_id()
    purchase = get_scoped_or_404(RawMaterialPurchase, client_id, purchase_id)
    db.session.delete(purchase)
    log_audit("DELETE", "RawMaterialPurchase", purchase_id, "Deleted purchase", client_id)
    db.session.commit()
    return '', 204
