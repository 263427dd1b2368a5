"""
QuickBooks Online client — OAuth endpoints plus the Accounting API v3.

Handles the token endpoint (code exchange, refresh), revocation, company
info, and generic entity CRUD/query with pagination.

QuickBooks API docs:
  https://developer.intuit.com/app/developer/qbo/docs/api/accounting/all-entities
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from qbolink.clients.base import AccountingClient, RemoteEntity
from qbolink.config import QBOLinkConfig
from qbolink.errors import AccessTokenExpiredError, RemoteServiceError
from qbolink.models import AccountMetadata, Credential, TokenPair

logger = logging.getLogger("qbolink.clients.quickbooks")

# QuickBooks API endpoints
_QBO_BASE_URL = "https://quickbooks.api.intuit.com/v3/company"
_QBO_SANDBOX_URL = "https://sandbox-quickbooks.api.intuit.com/v3/company"
_QBO_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
_QBO_REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
_QBO_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"

# Max results per API page
_PAGE_SIZE = 1000

# Name-list entities cannot be hard-deleted; QBO marks them inactive instead.
_NAME_LIST_ENTITIES = frozenset({
    "Account", "Class", "Customer", "Department", "Employee",
    "Item", "PaymentMethod", "TaxCode", "Term", "Vendor",
})


class QuickBooksClient(AccountingClient):
    """Talk to QuickBooks Online on behalf of stored credentials.

    Usage::

        client = QuickBooksClient(QBOLinkConfig.load("qbolink.yaml"))
        url = client.authorization_url(state="abc")
        tokens = await client.exchange_code(code, realm_id)
        customers = await client.query_entities(credential, "Customer")

    Reads (entity fetch, query, company info) are retried on transport
    errors, 429 and 5xx up to ``api.retry_attempts`` times. Token exchange,
    refresh and writes are attempted exactly once.
    """

    retry_backoff: float = 0.5

    def __init__(self, config: QBOLinkConfig, *, http_client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._base_url = _QBO_SANDBOX_URL if config.sandbox else _QBO_BASE_URL
        self._http = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self.config.api.timeout,
                headers={"Accept": "application/json"},
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, state: str | None = None) -> str:
        oauth = self.config.oauth
        params: dict[str, str] = {
            "client_id": oauth.client_id,
            "response_type": "code",
            "scope": oauth.scope,
            "redirect_uri": oauth.redirect_uri,
        }
        if state:
            params["state"] = state
        return f"{_QBO_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, realm_id: str) -> TokenPair:
        data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.oauth.redirect_uri,
        })
        logger.info("Exchanged authorization code for realm %s", realm_id)
        return TokenPair.from_oauth_response(data)

    async def refresh_token(self, refresh_token: str, realm_id: str) -> TokenPair:
        data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        logger.info("Refreshed access token for realm %s", realm_id)
        return TokenPair.from_oauth_response(data)

    async def revoke(self, refresh_token: str, realm_id: str) -> bool:
        client = await self._get_client()
        try:
            resp = await client.post(
                _QBO_REVOKE_URL,
                json={"token": refresh_token},
                auth=(self.config.oauth.client_id, self.config.oauth.client_secret),
                headers={"Accept": "application/json", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"Revoke request failed: {e}") from e
        if resp.status_code != 200:
            raise self._error_from_response(resp)
        logger.info("Revoked tokens for realm %s", realm_id)
        return True

    async def _token_request(self, payload: dict[str, str]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.post(
                _QBO_TOKEN_URL,
                data=payload,
                auth=(self.config.oauth.client_id, self.config.oauth.client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"Token request failed: {e}") from e

        if resp.status_code != 200:
            raise self._error_from_response(resp)

        data = self._json(resp)
        if not data.get("access_token"):
            raise RemoteServiceError("Incomplete token payload returned from QuickBooks.", status_code=resp.status_code)
        return data

    # ------------------------------------------------------------------
    # API helpers
    # ------------------------------------------------------------------

    def _url(self, credential: Credential, endpoint: str) -> str:
        return f"{self._base_url}/{credential.realm_id}/{endpoint}"

    async def _api_request(
        self,
        method: str,
        credential: Credential,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        idempotent: bool = False,
    ) -> dict[str, Any]:
        """Make an authenticated request to the QBO API."""
        client = await self._get_client()
        url = self._url(credential, endpoint)
        query = dict(params or {})
        if self.config.api.minor_version:
            query["minorversion"] = self.config.api.minor_version
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
        }

        attempts = max(1, self.config.api.retry_attempts) if idempotent else 1
        attempt = 1

        while True:
            try:
                resp = await client.request(method, url, params=query, json=json, headers=headers)
            except httpx.HTTPError as e:
                error = RemoteServiceError(f"QuickBooks request failed: {e}")
            else:
                if self.config.api.log_requests:
                    logger.debug("%s %s -> %d", method, url, resp.status_code)
                if resp.status_code < 400:
                    return self._json(resp)
                error = self._error_from_response(resp)
                if resp.status_code == 401:
                    raise AccessTokenExpiredError(
                        error.message, code=error.code, status_code=401, detail=error.detail,
                    )

            if attempt >= attempts or not error.is_transient:
                raise error
            logger.warning(
                "QBO %s %s failed (%s), retrying (%d/%d)",
                method, endpoint, error, attempt, attempts,
            )
            await asyncio.sleep(self.retry_backoff * attempt)
            attempt += 1

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        """Decode a successful response body; anything but a JSON object is a remote failure."""
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteServiceError(
                "Malformed response from QuickBooks (expected JSON)",
                code="invalid_response", status_code=resp.status_code,
            ) from e
        if not isinstance(data, dict):
            raise RemoteServiceError(
                "Malformed response from QuickBooks (expected a JSON object)",
                code="invalid_response", status_code=resp.status_code,
            )
        return data

    @staticmethod
    def _error_from_response(resp: httpx.Response) -> RemoteServiceError:
        """Build a RemoteServiceError from a QBO Fault or OAuth error body."""
        try:
            body = resp.json()
        except ValueError:
            body = None

        code: str | None = str(resp.status_code)
        message = resp.text or f"HTTP {resp.status_code}"
        if isinstance(body, dict):
            fault = body.get("Fault") or body.get("fault")
            if isinstance(fault, dict):
                errors = fault.get("Error") or fault.get("error") or []
                if errors:
                    first = errors[0]
                    code = str(first.get("code") or code)
                    message = first.get("Detail") or first.get("Message") or message
            elif "error" in body:
                code = str(body["error"])
                message = body.get("error_description") or message
        return RemoteServiceError(message, code=code, status_code=resp.status_code, detail=body)

    async def _query(self, credential: Credential, query: str) -> list[dict[str, Any]]:
        """Execute a QBO query (SQL-like) and handle pagination.

        The QBO query API uses STARTPOSITION and MAXRESULTS for pagination.
        """
        all_results: list[dict[str, Any]] = []
        start_pos = 1

        while True:
            paged_query = f"{query} STARTPOSITION {start_pos} MAXRESULTS {_PAGE_SIZE}"
            data = await self._api_request(
                "GET", credential, "query", params={"query": paged_query}, idempotent=True,
            )

            response = data.get("QueryResponse", {})

            # Find the entity list (it's the first key that isn't metadata)
            entities: list[dict[str, Any]] = []
            for value in response.values():
                if isinstance(value, list):
                    entities = value
                    break

            if not entities:
                break

            all_results.extend(entities)

            # If we got fewer than PAGE_SIZE, we've reached the end
            if len(entities) < _PAGE_SIZE:
                break

            start_pos += _PAGE_SIZE

        return all_results

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def fetch_entity(self, credential: Credential, type_name: str, remote_id: str) -> RemoteEntity | None:
        escaped = str(remote_id).replace("'", "\\'")
        results = await self._query(credential, f"SELECT * FROM {type_name} WHERE Id = '{escaped}'")
        return results[0] if results else None

    async def query_entities(
        self,
        credential: Credential,
        type_name: str,
        where: str | None = None,
    ) -> list[RemoteEntity]:
        query = f"SELECT * FROM {type_name}"
        if where:
            query += f" WHERE {where}"
        entities = await self._query(credential, query)
        logger.info("Fetched %d %s entities from QuickBooks", len(entities), type_name)
        return entities

    async def create_entity(self, credential: Credential, type_name: str, payload: RemoteEntity) -> RemoteEntity:
        data = await self._api_request("POST", credential, type_name.lower(), json=payload)
        return self._unwrap(data, type_name)

    async def update_entity(
        self,
        credential: Credential,
        type_name: str,
        payload: RemoteEntity,
        version_token: str | None,
    ) -> RemoteEntity:
        if not payload.get("Id"):
            raise ValueError("Update payload must include the remote Id")
        body = {**payload, "SyncToken": version_token, "sparse": True}
        data = await self._api_request("POST", credential, type_name.lower(), json=body)
        return self._unwrap(data, type_name)

    async def delete_entity(
        self,
        credential: Credential,
        type_name: str,
        remote_id: str,
        version_token: str | None,
    ) -> bool:
        body = {"Id": remote_id, "SyncToken": version_token}
        if type_name in _NAME_LIST_ENTITIES:
            await self._api_request(
                "POST", credential, type_name.lower(), json={**body, "sparse": True, "Active": False},
            )
        else:
            await self._api_request(
                "POST", credential, type_name.lower(), params={"operation": "delete"}, json=body,
            )
        logger.info("Deleted %s %s in QuickBooks", type_name, remote_id)
        return True

    async def fetch_account_metadata(self, credential: Credential) -> AccountMetadata:
        data = await self._api_request(
            "GET", credential, f"companyinfo/{credential.realm_id}", idempotent=True,
        )
        return AccountMetadata.from_company_info(data.get("CompanyInfo", {}))

    @staticmethod
    def _unwrap(data: dict[str, Any], type_name: str) -> RemoteEntity:
        entity = data.get(type_name)
        if not isinstance(entity, dict):
            raise RemoteServiceError(f"Malformed {type_name} response from QuickBooks", detail=data)
        return entity
