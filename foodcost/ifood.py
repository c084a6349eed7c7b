import logging
import time
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class IfoodError(Exception):
    """
    Failure talking to the iFood merchant API.

    Carries the upstream HTTP status (None when the request never got an
    answer) and whatever error body came back.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class IfoodClient:
    """
    Client for the iFood merchant API: OAuth2 client-credentials token
    exchange and read-only sales queries.

    No retries are attempted; every transport failure or non-2xx answer is
    raised as IfoodError for the caller to present.
    """

    BASE_URL = "https://merchant-api.ifood.com.br"
    TOKEN_PATH = "/oauth/token"
    SCOPES = ("merchant.read", "financial.read")
    DEFAULT_TIMEOUT = 30

    def __init__(self, client_id: str = None, client_secret: str = None, base_url: str = None,
                 timeout: float = None, access_token: str = None, session: requests.Session = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = (base_url or self.BASE_URL).rstrip('/')
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.session = session or requests.Session()
        self.access_token = access_token
        # A token handed in from outside is trusted until the API rejects it
        self.token_expiry = None

    @classmethod
    def from_config(cls, config, access_token: str = None) -> "IfoodClient":
        return cls(
            client_id=config.get('IFOOD_CLIENT_ID'),
            client_secret=config.get('IFOOD_CLIENT_SECRET'),
            base_url=config.get('IFOOD_BASE_URL'),
            timeout=config.get('IFOOD_TIMEOUT'),
            access_token=access_token,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _send(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"iFood request {method} {path} failed: {e}")
            raise IfoodError(f"iFood request failed: {e}") from e

        if not response.ok:
            try:
                details = response.json()
            except ValueError:
                details = response.text
            logger.error(f"iFood request {method} {path} returned {response.status_code}: {details}")
            raise IfoodError(f"iFood returned {response.status_code}", response.status_code, details)

        try:
            return response.json()
        except ValueError as e:
            raise IfoodError("iFood returned a non-JSON response", response.status_code, response.text) from e

    def request_token(self) -> Dict[str, Any]:
        """
        Exchange the client credentials for an access token.

        Returns:
            Token response dictionary (access_token, token_type, expires_in, scope)
        """
        if not self.client_id or not self.client_secret:
            raise IfoodError("iFood client id and secret must be configured", 400)

        data = {
            'grant_type': 'client_credentials',
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'scope': ' '.join(self.SCOPES),
        }
        token_data = self._send('POST', self.TOKEN_PATH, data=data, headers={'Accept': 'application/json'})
        if 'access_token' not in token_data:
            raise IfoodError("iFood token response has no access_token", None, token_data)

        self.access_token = token_data['access_token']
        expires_in = token_data.get('expires_in')
        self.token_expiry = time.time() + int(expires_in) if expires_in else None
        logger.info("Obtained iFood access token")
        return token_data

    def authenticate(self) -> str:
        return self.request_token()['access_token']

    def is_connected(self) -> bool:
        if not self.access_token:
            return False
        return self.token_expiry is None or time.time() < self.token_expiry

    def disconnect(self):
        self.access_token = None
        self.token_expiry = None

    def _ensure_token(self) -> str:
        if self.token_expiry is not None and time.time() >= self.token_expiry:
            self.disconnect()
        if not self.access_token:
            self.authenticate()
        return self.access_token

    def _get(self, path: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
        headers = {
            'Authorization': f"Bearer {self._ensure_token()}",
            'Accept': 'application/json',
        }
        return self._send('GET', path, params=params, headers=headers)

    def fetch_sales(self, merchant_id: str, begin_date: str, end_date: str, page: int = 1) -> Dict[str, Any]:
        """
        One page of a merchant's sales, as returned by the financial API.

        Args:
            merchant_id: iFood merchant id
            begin_date: First sales date (YYYY-MM-DD)
            end_date: Last sales date (YYYY-MM-DD)
            page: 1-based page number

        Returns:
            Response dictionary (sales, totalElements, totalPages, currentPage)
        """
        params = {
            'beginSalesDate': begin_date,
            'endSalesDate': end_date,
            'page': page,
        }
        return self._get(f"/financial/v3.0/merchants/{merchant_id}/sales", params=params)

    def get_sales(self, merchant_id: str, begin_date: str, end_date: str, page: int = 1) -> List[Dict[str, Any]]:
        return self.fetch_sales(merchant_id, begin_date, end_date, page).get('sales') or []

    def check_connection(self) -> Dict[str, Any]:
        return self._get("/merchant")
