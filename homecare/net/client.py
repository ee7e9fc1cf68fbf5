"""
API Client - HTTP access to the home-services backend.
Every failure is raised as a classified SyncError; payloads are returned as
decoded JSON (dicts / lists), never as model objects. Decoding into records is
the store's job.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import requests

from homecare.net.errors import DecodeFailure, NetworkUnavailable, classify_status

logger = logging.getLogger(__name__)

# Keys a list response may be wrapped under, besides the resource name itself
_ENVELOPE_KEYS = ('data', 'items', 'results')


class NetworkClient(Protocol):
    """What a store needs from the network. ApiClient is the real one."""

    def fetch_collection(self, resource_type: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    def create(self, resource_type: str, draft: Dict[str, Any]) -> Dict[str, Any]: ...

    def update(self, resource_type: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]: ...

    def remove(self, resource_type: str, record_id: str) -> None: ...


class ApiClient:
    """
    REST client over requests.

    Resources map onto conventional paths:
        GET    /<resource>            fetch_collection
        POST   /<resource>            create
        PATCH  /<resource>/<id>       update
        DELETE /<resource>/<id>       remove

    An empty base_url means no backend is configured; every call raises
    NetworkUnavailable so stores fall back to seed data.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or '').rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    # -------------------------------------------------------------------------
    # Low level
    # -------------------------------------------------------------------------

    def _request(self, method: str, path: str, params=None, json_body=None) -> Any:
        if not self.base_url:
            raise NetworkUnavailable("No API_BASE_URL configured")

        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            logger.debug(f"{method} {url}")
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"{method} {url} unreachable: {e}")
            raise NetworkUnavailable(str(e))
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise NetworkUnavailable(str(e))

        if not 200 <= response.status_code < 300:
            message = self._error_message(response)
            logger.error(f"{method} {url} -> {response.status_code}: {message}")
            raise classify_status(response.status_code, message)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{method} {url} returned invalid JSON: {e}")
            raise DecodeFailure(f"Invalid JSON from {path}: {e}")

    @staticmethod
    def _error_message(response) -> str:
        try:
            body = response.json()
        except ValueError:
            return (response.text or '').strip()
        if isinstance(body, dict):
            return str(body.get('detail') or body.get('message') or body)
        return str(body)

    # -------------------------------------------------------------------------
    # Resource operations
    # -------------------------------------------------------------------------

    def fetch_collection(self, resource_type: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """GET the collection. Accepts a bare list or a list inside a common envelope."""
        data = self._request('GET', f"/{resource_type}", params=params)
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in (resource_type,) + _ENVELOPE_KEYS:
                if isinstance(data.get(key), list):
                    return data[key]
        raise DecodeFailure(f"Expected a list for '{resource_type}', got {type(data).__name__}")

    def create(self, resource_type: str, draft: Dict[str, Any]) -> Dict[str, Any]:
        return self._expect_object(self._request('POST', f"/{resource_type}", json_body=draft), resource_type)

    def update(self, resource_type: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._expect_object(
            self._request('PATCH', f"/{resource_type}/{record_id}", json_body=patch), resource_type
        )

    def remove(self, resource_type: str, record_id: str) -> None:
        self._request('DELETE', f"/{resource_type}/{record_id}")

    @staticmethod
    def _expect_object(data: Any, resource_type: str) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise DecodeFailure(f"Expected an object for '{resource_type}', got {type(data).__name__}")
        return data
