from .clients import clients_blueprint
from .raw_materials import raw_materials_blueprint
from .products import products_blueprint
from .expenses import expenses_blueprint
from .labor import labor_blueprint
from .sales import sales_blueprint
from .reports import reports_blueprint
from .integrations import integrations_blueprint
