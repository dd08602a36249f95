"""REST client for the business-management backend.

Wraps a pooled requests session with retries, bearer-token auth and an
explicit timeout on every call so a hung backend cannot stall startup.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..data.errors import NetworkError
from ..data.models import EntityType
from .base import EntitySource

DEFAULT_TIMEOUT = 10
MAX_PAGES = 500


class ApiClient:
    """Thin JSON client over a shared requests session."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
        ca_bundle: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._verify = ca_bundle if (verify and ca_bundle) else verify
        self._session: Optional[requests.Session] = None

        if self._verify is False:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _get_session(self) -> requests.Session:
        """Get or create a requests session with retry configuration."""
        if self._session is None:
            session = requests.Session()
            retry = Retry(
                total=3,
                connect=3,
                read=3,
                backoff_factor=0.5,
                status_forcelist=(429, 500, 502, 503, 504),
                allowed_methods=("GET", "HEAD"),
            )
            adapter = HTTPAdapter(
                max_retries=retry,
                pool_connections=5,
                pool_maxsize=10,
            )
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            session.verify = self._verify
            session.headers.update({
                "User-Agent": "offline-cache/1.0",
                "Accept": "application/json",
            })
            if self.token:
                session.headers["Authorization"] = f"Bearer {self.token}"
            self._session = session
        return self._session

    def close(self) -> None:
        """Close the session and release resources."""
        if self._session is not None:
            self._session.close()
            self._session = None

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and decode the JSON body.

        Returns:
            Decoded JSON, or None for empty responses

        Raises:
            NetworkError: On connection failures, timeouts, non-2xx
                responses or undecodable bodies
        """
        url = self.url_for(path)
        try:
            resp = self._get_session().request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise NetworkError(path, f"{method} timed out after {self.timeout}s", exc) from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(path, f"{method} failed: {exc}", exc) from exc

        if resp.status_code == 401:
            raise NetworkError(path, "Session expired (401)", status_code=401)
        if not resp.ok:
            raise NetworkError(path, self._error_message(resp), status_code=resp.status_code)

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkError(path, "Response is not valid JSON", exc, resp.status_code) from exc

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return f"HTTP {resp.status_code}: {body['message']}"
        return f"HTTP {resp.status_code}"

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, data: Dict[str, Any]) -> Any:
        return self.request("POST", path, json=data)

    def put(self, path: str, data: Dict[str, Any]) -> Any:
        return self.request("PUT", path, json=data)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def is_available(self) -> bool:
        """Backend counts as reachable if it answers below 500."""
        try:
            resp = self._get_session().head(self.base_url, timeout=min(self.timeout, 5))
            return resp.status_code < 500
        except requests.exceptions.RequestException:
            return False


class EntityService(EntitySource):
    """CRUD access to one REST collection (e.g. /providers)."""

    def __init__(self, client: ApiClient, entity_type: EntityType, max_pages: int = MAX_PAGES):
        self.client = client
        self._entity_type = EntityType(entity_type)
        self.max_pages = max_pages

    @property
    def entity_type(self) -> EntityType:
        return self._entity_type

    @property
    def display_name(self) -> str:
        return self._entity_type.resource.capitalize()

    def is_available(self) -> bool:
        return self.client.is_available()

    def list_page(self, page: int = 1) -> Tuple[List[Dict[str, Any]], int]:
        """Fetch one page.

        Returns:
            Tuple of (entities, total_pages)

        Raises:
            NetworkError: If the request fails or the page body is malformed
        """
        body = self.client.get(f"/{self.name}", params={"page": page})
        if isinstance(body, list):
            return body, page
        if not isinstance(body, dict):
            return [], page
        items = body.get("data") or []
        meta = body.get("meta") or {}
        try:
            if not isinstance(items, list):
                raise TypeError(f"data is {type(items).__name__}, expected list")
            if not isinstance(meta, dict):
                raise TypeError(f"meta is {type(meta).__name__}, expected object")
            total_pages = int(meta.get("totalPages") or meta.get("total_pages") or page)
        except (TypeError, ValueError) as exc:
            raise NetworkError(self.name, f"Malformed page {page}: {exc}", exc) from exc
        return items, total_pages

    def fetch_all(self) -> List[Dict[str, Any]]:
        """Walk every page of the collection."""
        entities: List[Dict[str, Any]] = []
        page = 1
        while page <= self.max_pages:
            items, total_pages = self.list_page(page)
            entities.extend(items)
            if not items or page >= total_pages:
                break
            page += 1
        return entities

    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        return self._unwrap(self.client.get(f"/{self.name}/{entity_id}"))

    def create(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._unwrap(self.client.post(f"/{self.name}", data))

    def update(self, entity_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._unwrap(self.client.put(f"/{self.name}/{entity_id}", data))

    def delete(self, entity_id: str) -> None:
        self.client.delete(f"/{self.name}/{entity_id}")

    def _unwrap(self, body: Any) -> Optional[Dict[str, Any]]:
        # Some endpoints nest the entity, e.g. {"client": {...}} or {"data": {...}}
        if not isinstance(body, dict):
            return None
        for key in (self._entity_type.value, "data"):
            nested = body.get(key)
            if isinstance(nested, dict):
                return nested
        return body
