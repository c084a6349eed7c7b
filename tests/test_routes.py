"""
Tests for the JSON endpoints.
"""
import io

import pytest

from foodcost.models import db, AuditLog


def _post(client, url, headers, payload):
    response = client.post(url, json=payload, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


@pytest.fixture
def flour(client, headers):
    """Flour bought twice, the later purchase at 2.50/kg."""
    material = _post(client, '/raw-materials', headers, {
        'name': 'Farinha de trigo', 'measurement_unit': 'kg', 'minimum_stock': 5, 'current_stock': 2,
    })
    _post(client, '/raw-material-purchases', headers, {
        'raw_material_id': material['id'], 'quantity': 10, 'unit_price': 2.00, 'purchase_date': '2024-03-01',
    })
    _post(client, '/raw-material-purchases', headers, {
        'raw_material_id': material['id'], 'quantity': 5, 'unit_price': 2.50, 'purchase_date': '2024-03-05',
    })
    return material


class TestTenantScoping:

    def test_missing_client_header(self, client):
        response = client.get('/products')
        assert response.status_code == 400
        assert response.get_json()['field'] == 'client_id'

    def test_unknown_client(self, client, tenant):
        assert client.get('/products', headers={'X-Client-Id': '999'}).status_code == 404

    def test_rows_of_another_tenant_are_invisible(self, client, headers, other_headers, flour):
        assert client.get(f"/raw-materials/{flour['id']}", headers=other_headers).status_code == 404
        assert client.get('/raw-materials', headers=other_headers).get_json() == []

    def test_duplicate_client_email(self, client, tenant):
        response = client.post('/clients', json={'email': 'cozinha@test.com', 'name': 'Again'})
        assert response.status_code == 400


class TestRawMaterials:

    def test_latest_purchase_price_is_shown(self, client, headers, flour):
        material = client.get(f"/raw-materials/{flour['id']}", headers=headers).get_json()
        assert material['unit_price'] == 2.50

    def test_purchase_total_cost(self, client, headers, flour):
        purchases = client.get('/raw-material-purchases', headers=headers).get_json()
        assert purchases[0]['total_cost'] == 12.5
        assert purchases[1]['total_cost'] == 20.0

    def test_negative_stock_rejected(self, client, headers):
        response = client.post('/raw-materials', json={
            'name': 'Sal', 'measurement_unit': 'kg', 'current_stock': -1,
        }, headers=headers)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'current_stock'

    def test_selectable_and_low_stock(self, client, headers, flour):
        _post(client, '/raw-materials', headers, {'name': 'Leite', 'measurement_unit': 'l', 'current_stock': 50})

        selectable = client.get('/raw-materials/selectable', headers=headers).get_json()
        assert [m['name'] for m in selectable] == ['Farinha de trigo']

        low = client.get('/raw-materials/low-stock', headers=headers).get_json()
        assert [m['name'] for m in low] == ['Farinha de trigo']

    def test_material_in_use_cannot_be_deleted(self, client, headers, flour):
        _post(client, '/products', headers, {
            'name': 'Pão', 'product_ingredients': [{'raw_material_id': flour['id'], 'quantity': 1}],
        })
        assert client.delete(f"/raw-materials/{flour['id']}", headers=headers).status_code == 400


class TestProducts:

    def test_recipe_cost_uses_latest_price(self, client, headers, flour):
        product = _post(client, '/products', headers, {
            'name': 'Pão caseiro', 'selling_price': 15,
            'product_ingredients': [{'raw_material_id': flour['id'], 'quantity': 2, 'unit': 'kg'}],
        })
        assert product['recipe_cost'] == pytest.approx(5.00)
        assert product['margin_percentage'] == 30.0
        assert product['product_ingredients'][0]['unit_price'] == 2.50

    def test_ingredient_units_are_converted(self, client, headers, flour):
        product = _post(client, '/products', headers, {
            'name': 'Biscoito',
            'product_ingredients': [{'raw_material_id': flour['id'], 'quantity': 400, 'unit': 'g'}],
        })
        line = product['product_ingredients'][0]
        assert line['unit'] == 'g'
        assert line['converted_quantity'] == pytest.approx(0.4)
        assert line['total_cost'] == pytest.approx(1.00)

    def test_ingredient_lines_keep_their_order(self, client, headers, flour):
        sugar = _post(client, '/raw-materials', headers, {'name': 'Açúcar', 'measurement_unit': 'kg'})
        product = _post(client, '/products', headers, {
            'name': 'Bolo',
            'product_ingredients': [
                {'raw_material_id': sugar['id'], 'quantity': 1},
                {'raw_material_id': flour['id'], 'quantity': 1},
            ],
        })
        assert [i['raw_material_id'] for i in product['product_ingredients']] == [sugar['id'], flour['id']]

        added = _post(client, f"/products/{product['id']}/ingredients", headers,
                      {'raw_material_id': flour['id'], 'quantity': 0.5})
        assert added['position'] == 2

        response = client.delete(f"/ingredients/{product['product_ingredients'][0]['id']}", headers=headers)
        assert response.status_code == 204
        lines = client.get(f"/products/{product['id']}", headers=headers).get_json()['product_ingredients']
        assert [i['position'] for i in lines] == [0, 1]

    def test_partial_update_keeps_other_fields(self, client, headers, flour):
        product = _post(client, '/products', headers, {'name': 'Pizza', 'selling_price': 40, 'category': 'Massas'})
        response = client.patch(f"/products/{product['id']}", json={'selling_price': 45}, headers=headers)
        data = response.get_json()
        assert data['selling_price'] == 45
        assert data['category'] == 'Massas'

    def test_ingredient_of_another_tenant(self, client, headers, other_headers, flour):
        product = _post(client, '/products', headers, {
            'name': 'Pão', 'product_ingredients': [{'raw_material_id': flour['id'], 'quantity': 1}],
        })
        ingredient_id = product['product_ingredients'][0]['id']
        assert client.delete(f"/ingredients/{ingredient_id}", headers=other_headers).status_code == 404

    def test_pricing_against_estimated_revenue(self, client, headers):
        cheese = _post(client, '/raw-materials', headers, {'name': 'Queijo', 'measurement_unit': 'kg'})
        _post(client, '/raw-material-purchases', headers, {
            'raw_material_id': cheese['id'], 'quantity': 3, 'unit_price': 10, 'purchase_date': '2024-03-02',
        })
        _post(client, '/fixed-expenses', headers, {'name': 'Aluguel', 'amount': 1000, 'frequency': 'monthly'})
        _post(client, '/variable-expenses', headers, {'name': 'Gás', 'amount': 500, 'expense_date': '2024-03-15'})
        product = _post(client, '/products', headers, {
            'name': 'Pizza', 'selling_price': 26, 'margin_percentage': 30,
            'product_ingredients': [{'raw_material_id': cheese['id'], 'quantity': 1}],
        })

        pricing = client.get(f"/products/{product['id']}/pricing?year=2024&month=3", headers=headers).get_json()
        assert pricing['recipe_cost'] == 10.00
        assert pricing['base_price'] == 20.00
        assert pricing['suggested_price'] == 26.00
        assert pricing['expense_cost'] == 13.00
        assert pricing['profit'] == 3.00
        assert pricing['used_estimate'] is True
        assert pricing['expense_ratios']['total_pct'] == 50.00

    def test_pricing_preview(self, client, headers, flour):
        response = client.post('/products/pricing-preview', json={
            'selling_price': 10,
            'product_ingredients': [{'raw_material_id': flour['id'], 'quantity': 2}],
        }, headers=headers)
        pricing = response.get_json()
        assert pricing['recipe_cost'] == 5.00
        assert pricing['suggested_price'] == 6.50
        assert pricing['profit'] == 5.00


class TestExpenses:

    def test_fixed_expense_equivalents(self, client, headers):
        expense = _post(client, '/fixed-expenses', headers, {
            'name': 'Contador', 'amount': 1200, 'frequency': 'trimestral',
        })
        assert expense['frequency'] == 'quarterly'
        assert expense['monthly_equivalent'] == 400.00
        assert expense['annual_equivalent'] == 4800.00

    def test_unknown_frequency_rejected(self, client, headers):
        response = client.post('/fixed-expenses', json={
            'name': 'Seguro', 'amount': 100, 'frequency': 'weekly',
        }, headers=headers)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'frequency'

    @pytest.mark.parametrize('amount', ['Infinity', '-Infinity', 'nan', 'NaN'])
    def test_non_finite_amount_rejected(self, client, headers, amount):
        response = client.post('/fixed-expenses', json={'name': 'Aluguel', 'amount': amount}, headers=headers)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'amount'

        response = client.post('/variable-expenses', json={
            'name': 'Gás', 'amount': amount, 'expense_date': '2024-03-01',
        }, headers=headers)
        assert response.status_code == 400

        assert client.get('/dashboard?year=2024&month=3', headers=headers).status_code == 200
        assert client.get('/expense-ratios?year=2024&month=3', headers=headers).status_code == 200

    def test_non_finite_json_number_rejected(self, client, headers):
        response = client.post('/fixed-expenses', data='{"name": "Aluguel", "amount": Infinity}',
                               content_type='application/json', headers=headers)
        assert response.status_code == 400

    def test_summary_skips_inactive(self, client, headers):
        _post(client, '/fixed-expenses', headers, {'name': 'Aluguel', 'amount': 2000})
        _post(client, '/fixed-expenses', headers, {'name': 'Antigo', 'amount': 900, 'is_active': False})

        summary = client.get('/fixed-expenses/summary', headers=headers).get_json()
        assert summary['active_count'] == 1
        assert summary['total_monthly'] == 2000.00
        assert summary['total_annual'] == 24000.00

    def test_variable_summary_by_month(self, client, headers):
        _post(client, '/variable-expenses', headers, {'name': 'Gás', 'category': 'Utilidades',
                                                       'amount': 120, 'expense_date': '2024-03-03'})
        _post(client, '/variable-expenses', headers, {'name': 'Embalagens', 'category': 'Insumos',
                                                       'amount': 80, 'expense_date': '2024-04-01'})

        summary = client.get('/variable-expenses/summary?year=2024&month=3', headers=headers).get_json()
        assert summary['total_month'] == 120.00
        assert summary['total_year'] == 200.00

    def test_employee_burden(self, client, headers):
        employee = _post(client, '/employee-costs', headers, {
            'professional': 'Cozinheiro', 'hourly_cost': 20, 'average_salary': 2500,
            'benefits': 400, 'fgts': 200, 'thirteenth_salary': 208.33,
        })
        assert employee['total_monthly_cost'] == pytest.approx(3308.33)

        summary = client.get('/employee-costs/summary', headers=headers).get_json()
        assert summary['total_monthly_burden'] == 3308.33


class TestSales:

    def test_average_ticket_is_derived(self, client, headers):
        sale = _post(client, '/sales', headers, {'sale_date': '2024-03-01', 'total_sales': 1000,
                                                  'number_of_orders': 30})
        assert sale['average_ticket'] == 33.33

    def test_import_csv(self, client, headers):
        sheet = (
            "sale_date,total_sales,number_of_orders\n"
            "2024-03-01,1000,40\n"
            ",500,10\n"
            "2024-03-02,abc,5\n"
        )
        response = client.post(
            '/sales/import',
            data={'file': (io.BytesIO(sheet.encode('utf-8')), 'vendas.csv')},
            headers=headers,
            content_type='multipart/form-data',
        )
        assert response.status_code == 201
        result = response.get_json()
        assert result['imported'] == 1
        assert [row['row'] for row in result['skipped']] == [3, 4]

        sales = client.get('/sales', headers=headers).get_json()
        assert sales[0]['average_ticket'] == 25.0

    def test_import_requires_columns(self, client, headers):
        response = client.post(
            '/sales/import',
            data={'file': (io.BytesIO(b"date,amount\n2024-03-01,10\n"), 'vendas.csv')},
            headers=headers,
            content_type='multipart/form-data',
        )
        assert response.status_code == 400

    def test_orders_overflow_rejected(self, client, headers):
        response = client.post('/sales', data='{"sale_date": "2024-03-01", "total_sales": 10, "number_of_orders": 1e400}',
                               content_type='application/json', headers=headers)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'number_of_orders'

    @pytest.mark.parametrize('content,filename', [
        (b'', 'vendas.csv'),
        (b'not a workbook', 'vendas.xlsx'),
    ])
    def test_unreadable_upload(self, client, headers, content, filename):
        response = client.post(
            '/sales/import',
            data={'file': (io.BytesIO(content), filename)},
            headers=headers,
            content_type='multipart/form-data',
        )
        assert response.status_code == 400
        assert response.get_json()['field'] == 'file'


class TestReports:

    def test_dashboard(self, client, headers, flour):
        _post(client, '/products', headers, {
            'name': 'Pão', 'selling_price': 20,
            'product_ingredients': [{'raw_material_id': flour['id'], 'quantity': 2}],
        })
        _post(client, '/sales', headers, {'sale_date': '2024-03-10', 'total_sales': 1000, 'number_of_orders': 40})
        _post(client, '/fixed-expenses', headers, {'name': 'Aluguel', 'amount': 100})

        dashboard = client.get('/dashboard?year=2024&month=3', headers=headers).get_json()
        assert dashboard['revenue']['month'] == 1000.00
        assert dashboard['revenue']['average_ticket'] == 25.00
        # 5.00 per unit, 1000 / 20 * 10% = 5 units
        assert dashboard['cmv'] == 25.00
        assert dashboard['cmo'] == 100.00
        assert dashboard['break_even_computable'] is True
        assert dashboard['low_stock_materials'][0]['name'] == 'Farinha de trigo'

    def test_dashboard_without_sales(self, client, headers):
        dashboard = client.get('/dashboard?year=2024&month=3', headers=headers).get_json()
        assert dashboard['break_even_point'] is None
        assert dashboard['break_even_computable'] is False
        assert dashboard['currency_symbol'] == 'R$'

    def test_invalid_month(self, client, headers):
        assert client.get('/expense-ratios?year=2024&month=13', headers=headers).status_code == 400

    def test_changes_are_audited(self, app, client, headers, flour):
        with app.app_context():
            actions = [log.action for log in db.session.query(AuditLog).filter_by(target_type='RawMaterial')]
        assert actions == ['CREATE']
