"""
Tests for the iFood client and proxy endpoints.
"""
import time
from unittest.mock import Mock, patch

import pytest
import requests

from foodcost.ifood import IfoodClient, IfoodError


def _response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = body if body is not None else {}
    response.text = str(body)
    return response


TOKEN = {'access_token': 'abc123', 'token_type': 'Bearer', 'expires_in': 3600,
         'scope': 'merchant.read financial.read'}


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def ifood(session):
    return IfoodClient('client-id', 'client-secret', base_url='https://ifood.test', session=session)


class TestIfoodClient:

    def test_authenticate(self, ifood, session):
        session.request.return_value = _response(200, TOKEN)

        assert ifood.authenticate() == 'abc123'
        assert ifood.is_connected() is True

        args, kwargs = session.request.call_args
        assert args == ('POST', 'https://ifood.test/oauth/token')
        assert kwargs['data']['grant_type'] == 'client_credentials'
        assert kwargs['data']['scope'] == 'merchant.read financial.read'
        assert kwargs['timeout'] == 30

    def test_get_sales(self, ifood, session):
        session.request.side_effect = [
            _response(200, TOKEN),
            _response(200, {'sales': [{'id': 's1', 'totalAmount': 45.9}], 'totalPages': 1}),
        ]

        sales = ifood.get_sales('merchant-1', '2024-03-01', '2024-03-31')

        assert sales == [{'id': 's1', 'totalAmount': 45.9}]
        args, kwargs = session.request.call_args
        assert args == ('GET', 'https://ifood.test/financial/v3.0/merchants/merchant-1/sales')
        assert kwargs['params'] == {'beginSalesDate': '2024-03-01', 'endSalesDate': '2024-03-31', 'page': 1}
        assert kwargs['headers']['Authorization'] == 'Bearer abc123'

    def test_expired_token_is_renewed(self, ifood, session):
        ifood.access_token = 'old'
        ifood.token_expiry = time.time() - 1
        session.request.side_effect = [_response(200, TOKEN), _response(200, {'id': 'merchant-1'})]

        assert ifood.check_connection() == {'id': 'merchant-1'}
        assert session.request.call_args_list[0].args[0] == 'POST'
        assert ifood.access_token == 'abc123'

    def test_error_status_is_raised(self, ifood, session):
        ifood.access_token = 'abc123'
        session.request.return_value = _response(403, {'message': 'forbidden'})

        with pytest.raises(IfoodError) as excinfo:
            ifood.get_sales('merchant-1', '2024-03-01', '2024-03-31')
        assert excinfo.value.status_code == 403
        assert excinfo.value.details == {'message': 'forbidden'}
        assert session.request.call_count == 1

    def test_transport_failure(self, ifood, session):
        session.request.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(IfoodError) as excinfo:
            ifood.authenticate()
        assert excinfo.value.status_code is None

    def test_missing_credentials(self, session):
        with pytest.raises(IfoodError):
            IfoodClient(session=session).authenticate()
        session.request.assert_not_called()

    def test_disconnect(self, ifood, session):
        session.request.return_value = _response(200, TOKEN)
        ifood.authenticate()
        ifood.disconnect()
        assert ifood.is_connected() is False


class TestIfoodProxy:

    def test_health(self, client):
        response = client.get('/api/test')
        assert response.status_code == 200
        assert 'timestamp' in response.get_json()

    def test_sales_require_token(self, client):
        assert client.get('/api/ifood/sales/merchant-1').status_code == 401

    @patch('foodcost.ifood.requests.Session')
    def test_auth_uses_body_credentials(self, session_class, client):
        session = session_class.return_value
        session.request.return_value = _response(200, TOKEN)

        response = client.post('/api/ifood/auth', json={'clientId': 'abc', 'clientSecret': 'xyz'})

        assert response.status_code == 200
        assert response.get_json()['access_token'] == 'abc123'
        assert session.request.call_args.kwargs['data']['client_id'] == 'abc'

    @patch('foodcost.ifood.requests.Session')
    def test_sales_are_relayed(self, session_class, client):
        session = session_class.return_value
        session.request.return_value = _response(200, {'sales': [], 'totalPages': 0})

        response = client.get('/api/ifood/sales/merchant-1?beginDate=2024-03-01&endDate=2024-03-31',
                               headers={'Authorization': 'Bearer abc123'})

        assert response.status_code == 200
        assert response.get_json() == {'sales': [], 'totalPages': 0}
        assert session.request.call_args.kwargs['headers']['Authorization'] == 'Bearer abc123'

    @patch('foodcost.ifood.requests.Session')
    def test_upstream_error_is_relayed(self, session_class, client):
        session = session_class.return_value
        session.request.return_value = _response(401, {'message': 'token expired'})

        response = client.get('/api/ifood/check', headers={'Authorization': 'Bearer stale'})

        assert response.status_code == 401
        assert response.get_json()['details'] == {'message': 'token expired'}
