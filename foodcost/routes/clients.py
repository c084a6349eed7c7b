from flask import Blueprint, jsonify
from flask_babel import gettext as _
from ..models import db, Client, ValidationError
from .utils import get_payload, read_fields, apply_fields, as_text, as_optional_text, as_bool, log_audit

clients_blueprint = Blueprint('clients', __name__)

CLIENT_FIELDS = {
    'email': (as_text, True),
    'name': (as_text, True),
    'company_name': (as_optional_text, False),
    'phone': (as_optional_text, False),
    'is_active': (as_bool, False),
}

# ----------------------------
# Clients (tenants)
# ----------------------------
@clients_blueprint.route('/clients', methods=['GET'])
def list_clients():
    return jsonify([c.to_dict() for c in Client.query.order_by(Client.name).all()])


@clients_blueprint.route('/clients', methods=['POST'])
def create_client():
    values = read_fields(get_payload(), CLIENT_FIELDS)
    if Client.query.filter_by(email=values['email']).first():
        raise ValidationError(_('Email already registered'), 'email')

    client = apply_fields(Client(), values)
    db.session.add(client)
    db.session.flush()
    log_audit("CREATE", "Client", client.id, f"Created client {client.name}", client_id=client.id)
    db.session.commit()
    return jsonify(client.to_dict()), 201


@clients_blueprint.route('/clients/<int:client_id>', methods=['GET'])
def get_client(client_id):
    return jsonify(db.get_or_404(Client, client_id).to_dict())
