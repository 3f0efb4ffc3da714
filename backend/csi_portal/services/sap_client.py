"""
SAP Client
==========
HTTP access to the SAP organizational-data REST API.

Every call returns ``{"success", "data", "error"}`` instead of raising, so the
sync service can record partial failures per level.

Usage:
    from csi_portal.services.sap_client import sap_client

    result = await sap_client.fetch_business_units()
    if result["success"]:
        units = result["data"]
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from csi_portal.core.config import settings
from csi_portal.core.logging_config import logger


class SAPClient:
    """Thin async wrapper with retry and exponential backoff"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.SAP_API_URL
        self.api_key = api_key if api_key is not None else settings.SAP_API_KEY
        self.timeout = timeout or settings.SAP_TIMEOUT
        self.max_retries = settings.SAP_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.SAP_RETRY_DELAY if retry_delay is None else retry_delay
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self.transport,
        )

    @staticmethod
    def _is_retryable(error: Exception) -> bool:
        """Network errors and 5xx responses are retried"""
        if isinstance(error, httpx.HTTPStatusError):
            return 500 <= error.response.status_code < 600
        return isinstance(error, httpx.RequestError)

    @staticmethod
    def _error_message(error: Exception) -> str:
        if isinstance(error, httpx.HTTPStatusError):
            response = error.response
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("message"):
                return body["message"]
            return response.reason_phrase or f"HTTP {response.status_code}"
        if isinstance(error, httpx.RequestError):
            return "No response from SAP server"
        return str(error)

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.base_url:
            return {"success": False, "data": None, "error": "SAP API URL is not configured"}

        attempt = 0
        while True:
            try:
                async with self._client() as client:
                    logger.debug(f"[SAP] Request: {method} {endpoint}")
                    response = await client.request(method, endpoint, params=params, json=json)
                    response.raise_for_status()
                    logger.debug(f"[SAP] Response: {response.status_code} {endpoint}")
                    return {"success": True, "data": response.json(), "error": None}
            except (httpx.HTTPError, ValueError) as e:
                if attempt < self.max_retries and self._is_retryable(e):
                    logger.warning(f"[SAP] Request failed, retrying ({attempt + 1}/{self.max_retries})...")
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                    attempt += 1
                    continue

                message = self._error_message(e)
                logger.error(f"[SAP] Request failed after {attempt} retries: {message}")
                return {"success": False, "data": None, "error": message}

    async def fetch_organizational_data(self) -> Dict[str, Any]:
        logger.info("[SAP] Fetching organizational data")
        return await self._request("GET", "/organizational-data")

    async def fetch_business_units(self) -> Dict[str, Any]:
        logger.info("[SAP] Fetching business units")
        return await self._request("GET", "/business-units")

    async def fetch_divisions(self, business_unit_code: Optional[str] = None) -> Dict[str, Any]:
        logger.info("[SAP] Fetching divisions")
        params = {"businessUnit": business_unit_code} if business_unit_code else None
        return await self._request("GET", "/divisions", params=params)

    async def fetch_departments(self, division_code: Optional[str] = None) -> Dict[str, Any]:
        logger.info("[SAP] Fetching departments")
        params = {"division": division_code} if division_code else None
        return await self._request("GET", "/departments", params=params)

    async def test_connection(self) -> Dict[str, Any]:
        logger.info("[SAP] Testing connection")
        return await self._request("GET", "/health")

    async def fetch_all_organizational_data(self) -> Dict[str, Any]:
        logger.info("[SAP] Fetching all organizational data")
        return await self._request("GET", "/organizational-data/all")


sap_client = SAPClient()
