from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

FREQUENCIES = ('monthly', 'quarterly', 'semiannual', 'annual')

# Monthly payroll burden components of an employee; hourly_cost stays out of it
EMPLOYEE_BURDEN_FIELDS = (
    'average_salary',
    'benefits',
    'fgts',
    'vacation_allowance',
    'vacation_bonus',
    'fgts_vacation_bonus',
    'thirteenth_salary',
    'fgts_thirteenth',
    'notice_period',
    'fgts_notice_period',
    'fgts_penalty',
)

# Custom exceptions
class ValidationError(Exception):
    """Raised when a payload cannot be stored as given"""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


def _iso(value):
    return value.isoformat() if value else None


class Client(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    company_name = db.Column(db.String(150), nullable=True)
    phone = db.Column(db.String(30), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'company_name': self.company_name,
            'phone': self.phone,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class RawMaterial(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    code = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    measurement_unit = db.Column(db.String(20), nullable=False)  # Base unit, e.g. 'kg', 'l', 'un'
    supplier = db.Column(db.String(100), nullable=True)
    minimum_stock = db.Column(db.Float, nullable=False, default=0.0)
    current_stock = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self, unit_price=None):
        data = {
            'id': self.id,
            'client_id': self.client_id,
            'code': self.code,
            'name': self.name,
            'category': self.category,
            'measurement_unit': self.measurement_unit,
            'supplier': self.supplier,
            'minimum_stock': self.minimum_stock,
            'current_stock': self.current_stock,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }
        if unit_price is not None:
            data['unit_price'] = unit_price
        return data


class RawMaterialPurchase(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    raw_material_id = db.Column(db.Integer, db.ForeignKey('raw_material.id'), nullable=False)
    quantity = db.Column(db.Float, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    total_cost = db.Column(db.Float, nullable=False)  # quantity * unit_price
    purchase_date = db.Column(db.Date, nullable=False)
    supplier = db.Column(db.String(100), nullable=True)
    payment_method = db.Column(db.String(50), nullable=True)
    receipt = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    raw_material = db.relationship('RawMaterial', backref=db.backref('purchases', lazy=True, cascade='all, delete-orphan'))

    def to_dict(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'raw_material_id': self.raw_material_id,
            'raw_material_name': self.raw_material.name if self.raw_material else None,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'total_cost': self.total_cost,
            'purchase_date': _iso(self.purchase_date),
            'supplier': self.supplier,
            'payment_method': self.payment_method,
            'receipt': self.receipt,
            'notes': self.notes,
            'created_at': _iso(self.created_at)
        }


class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    code = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    portion_yield = db.Column(db.Float, nullable=False, default=1.0)
    portion_unit = db.Column(db.String(20), nullable=False, default='porções')
    selling_price = db.Column(db.Float, nullable=False, default=0.0)
    margin_percentage = db.Column(db.Float, nullable=False, default=30.0)  # Target margin
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_modified = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ingredients = db.relationship('ProductIngredient', backref='product', lazy=True,
                                  cascade='all, delete-orphan', order_by='ProductIngredient.position')

    @property
    def recipe_cost(self):
        return sum(ingredient.total_cost or 0 for ingredient in self.ingredients)

    def to_dict(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'code': self.code,
            'name': self.name,
            'category': self.category,
            'description': self.description,
            'portion_yield': self.portion_yield,
            'portion_unit': self.portion_unit,
            'selling_price': self.selling_price,
            'margin_percentage': self.margin_percentage,
            'recipe_cost': self.recipe_cost,
            'product_ingredients': [i.to_dict() for i in self.ingredients],
            'created_at': _iso(self.created_at),
            'last_modified': _iso(self.last_modified)
        }


class ProductIngredient(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    raw_material_id = db.Column(db.Integer, db.ForeignKey('raw_material.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(20), nullable=False)  # Unit chosen at entry time
    converted_quantity = db.Column(db.Float, nullable=False, default=0.0)  # In the material's base unit
    unit_price = db.Column(db.Float, nullable=False, default=0.0)
    total_cost = db.Column(db.Float, nullable=False, default=0.0)

    raw_material = db.relationship('RawMaterial')

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'raw_material_id': self.raw_material_id,
            'raw_material_name': self.raw_material.name if self.raw_material else None,
            'position': self.position,
            'quantity': self.quantity,
            'unit': self.unit,
            'converted_quantity': self.converted_quantity,
            'unit_price': self.unit_price,
            'total_cost': self.total_cost
        }


class FixedExpense(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    frequency = db.Column(db.String(20), nullable=False, default='monthly')  # See FREQUENCIES
    due_date = db.Column(db.Integer, nullable=False, default=1)  # Day of month
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'name': self.name,
            'category': self.category,
            'amount': self.amount,
            'frequency': self.frequency,
            'due_date': self.due_date,
            'description': self.description,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class VariableExpense(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    expense_date = db.Column(db.Date, nullable=False)
    payment_method = db.Column(db.String(50), nullable=True)
    receipt = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'name': self.name,
            'category': self.category,
            'amount': self.amount,
            'expense_date': _iso(self.expense_date),
            'payment_method': self.payment_method,
            'receipt': self.receipt,
            'description': self.description,
            'created_at': _iso(self.created_at)
        }


class EmployeeCost(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    professional = db.Column(db.String(100), nullable=False)
    hourly_cost = db.Column(db.Float, nullable=False, default=0.0)  # Informational only
    average_salary = db.Column(db.Float, nullable=False, default=0.0)
    benefits = db.Column(db.Float, nullable=False, default=0.0)
    fgts = db.Column(db.Float, nullable=False, default=0.0)
    vacation_allowance = db.Column(db.Float, nullable=False, default=0.0)
    vacation_bonus = db.Column(db.Float, nullable=False, default=0.0)
    fgts_vacation_bonus = db.Column(db.Float, nullable=False, default=0.0)
    thirteenth_salary = db.Column(db.Float, nullable=False, default=0.0)
    fgts_thirteenth = db.Column(db.Float, nullable=False, default=0.0)
    notice_period = db.Column(db.Float, nullable=False, default=0.0)
    fgts_notice_period = db.Column(db.Float, nullable=False, default=0.0)
    fgts_penalty = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def total_monthly_cost(self):
        return sum(getattr(self, field) or 0.0 for field in EMPLOYEE_BURDEN_FIELDS)

    def to_dict(self):
        data = {
            'id': self.id,
            'client_id': self.client_id,
            'professional': self.professional,
            'hourly_cost': self.hourly_cost,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }
        for field in EMPLOYEE_BURDEN_FIELDS:
            data[field] = getattr(self, field)
        data['total_monthly_cost'] = self.total_monthly_cost
        return data


class Sale(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False, index=True)
    sale_date = db.Column(db.Date, nullable=False)
    total_sales = db.Column(db.Float, nullable=False, default=0.0)
    number_of_orders = db.Column(db.Integer, nullable=False, default=0)
    average_ticket = db.Column(db.Float, nullable=False, default=0.0)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'sale_date': _iso(self.sale_date),
            'total_sales': self.total_sales,
            'number_of_orders': self.number_of_orders,
            'average_ticket': self.average_ticket,
            'notes': self.notes,
            'created_at': _iso(self.created_at)
        }


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    action = db.Column(db.String(50), nullable=False)
    target_type = db.Column(db.String(50), nullable=False)
    target_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            'action': self.action,
            'target_type': self.target_type,
            'target_id': self.target_id,
            'details': self.details
        }
