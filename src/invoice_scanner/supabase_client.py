import logging
from typing import Any
from urllib.parse import quote

import httpx

from invoice_scanner.errors import ConfigurationError, SupabaseError

STORAGE_PATH = "/storage/v1"
REST_PATH = "/rest/v1"

# PostgREST returns a bare object (not a list) for this media type and
# answers 406 when the filter matched no rows.
_SINGLE_OBJECT = "application/vnd.pgrst.object+json"

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Minimal async Supabase REST client (Storage + PostgREST).

    The handle is constructed explicitly and passed to whoever needs it, so
    tests can hand in an ``httpx.AsyncClient`` with a mock transport instead
    of talking to a real project.

    When no ``http_client`` is supplied a short-lived ``httpx.AsyncClient``
    is opened per request.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        if not url:
            raise ConfigurationError("Supabase URL not set (INVOICE_SCANNER_SUPABASE_URL)")
        if not api_key:
            raise ConfigurationError("Supabase key not set (INVOICE_SCANNER_SUPABASE_ANON_KEY)")
        self.url = url.rstrip("/")
        self._http_client = http_client
        self._timeout = timeout
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an authenticated request and raise SupabaseError on failure."""
        url = f"{self.url}{path}"
        merged = {**self._headers, **(headers or {})}
        logger.debug("Supabase %s %s params=%s", method, path, kwargs.get("params"))
        try:
            if self._http_client is not None:
                resp = await self._http_client.request(method, url, headers=merged, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.request(method, url, headers=merged, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Supabase %s %s transport error: %s", method, path, exc)
            raise SupabaseError(f"{method} {path} failed: {exc}") from exc

        if not resp.is_success:
            logger.error(
                "Supabase error %s for %s %s: %s",
                resp.status_code,
                method,
                path,
                resp.text[:500],
            )
            raise SupabaseError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    @staticmethod
    def _object_path(bucket: str, key: str) -> str:
        return f"{quote(bucket, safe='')}/{quote(key, safe='/')}"

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> dict:
        """Upload raw bytes to ``bucket/key``.

        Returns:
            Storage API acknowledgement (``{"Key": "bucket/key", ...}``).
        """
        resp = await self._request(
            "POST",
            f"{STORAGE_PATH}/object/{self._object_path(bucket, key)}",
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
            },
            content=data,
        )
        logger.info("Uploaded %d bytes to %s/%s", len(data), bucket, key)
        return resp.json()

    def get_public_url(self, bucket: str, key: str) -> str:
        """Return the public URL of an object. No network call is made."""
        return f"{self.url}{STORAGE_PATH}/object/public/{self._object_path(bucket, key)}"

    async def remove(self, bucket: str, keys: list[str]) -> list[dict]:
        """Delete objects from a bucket."""
        resp = await self._request(
            "DELETE",
            f"{STORAGE_PATH}/object/{quote(bucket, safe='')}",
            json={"prefixes": keys},
        )
        logger.info("Removed %d object(s) from %s", len(keys), bucket)
        return resp.json()

    # ------------------------------------------------------------------
    # Tables (PostgREST)
    # ------------------------------------------------------------------

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored."""
        resp = await self._request(
            "POST",
            f"{REST_PATH}/{table}",
            headers={"Prefer": "return=representation", "Accept": _SINGLE_OBJECT},
            json=row,
        )
        return resp.json()

    async def select_single(
        self, table: str, column: str, value: str
    ) -> dict[str, Any] | None:
        """Fetch exactly one row where ``column`` equals ``value``.

        Returns None when no row matches.
        """
        try:
            resp = await self._request(
                "GET",
                f"{REST_PATH}/{table}",
                headers={"Accept": _SINGLE_OBJECT},
                params={column: f"eq.{value}", "select": "*"},
            )
        except SupabaseError as exc:
            if exc.status_code == 406:
                return None
            raise
        return resp.json()

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, str] | None = None,
        order: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows matching equality ``filters``, optionally ordered and limited."""
        params: dict[str, str] = {"select": "*"}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = f"{order}.{'asc' if ascending else 'desc'}"
        if limit is not None:
            params["limit"] = str(limit)

        resp = await self._request("GET", f"{REST_PATH}/{table}", params=params)
        rows = resp.json()
        logger.debug("select %s returned %d rows", table, len(rows))
        return rows
