"""Async httpx wrappers for the Solana RPC provider and the Supabase project."""

from __future__ import annotations

from typing import Any

import httpx

from pecoin.api.models import RpcError
from pecoin.errors import ExternalFetchError


class SolanaRPCClient:
    """Async JSON-RPC client for a Solana RPC provider (Alchemy or compatible)."""

    def __init__(
        self,
        rpc_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.rpc_url = rpc_url
        kwargs: dict[str, Any] = {
            "timeout": timeout,
            "headers": {"Content-Type": "application/json"},
        }
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, payload: Any) -> Any:
        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            raise ExternalFetchError(f"RPC request failed: {exc}", endpoint="rpc") from exc
        except ValueError as exc:
            raise ExternalFetchError("RPC returned malformed JSON", endpoint="rpc") from exc

    async def call(self, method: str, params: Any) -> Any:
        """Single JSON-RPC call. Raises ExternalFetchError on an error object."""
        data = await self._post({"jsonrpc": "2.0", "id": 1, "method": method, "params": params})
        if not isinstance(data, dict):
            raise ExternalFetchError(f"Unexpected {method} payload", endpoint=method)
        if data.get("error"):
            err = data["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            raise ExternalFetchError(f"{method} error: {message}", endpoint=method)
        return data.get("result")

    async def batch(self, calls: list[tuple[str, Any]]) -> list[Any]:
        """Send many JSON-RPC calls in one HTTP round trip.

        Results come back in request order. An item that failed on the
        provider side is returned as an ``RpcError`` instead of raising, so
        one bad wallet does not sink the whole batch.
        """
        if not calls:
            return []
        payload = [
            {"jsonrpc": "2.0", "id": i, "method": method, "params": params}
            for i, (method, params) in enumerate(calls)
        ]
        data = await self._post(payload)
        if not isinstance(data, list):
            raise ExternalFetchError(
                "RPC batch returned a non-list payload",
                endpoint=calls[0][0],
                key_count=len(calls),
            )

        results: list[Any] = [RpcError(message="missing from batch response")] * len(calls)
        for item in data:
            idx = item.get("id") if isinstance(item, dict) else None
            if not isinstance(idx, int) or not 0 <= idx < len(calls):
                continue
            if item.get("error"):
                err = item["error"]
                results[idx] = RpcError(**err) if isinstance(err, dict) else RpcError(message=str(err))
            else:
                results[idx] = item.get("result")
        return results


class SupabaseClient:
    """Minimal Supabase client: PostgREST selects and storage URL signing."""

    def __init__(
        self,
        url: str,
        key: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.url = url.rstrip("/")
        kwargs: dict[str, Any] = {
            "base_url": self.url,
            "timeout": timeout,
            "headers": {"apikey": key, "Authorization": f"Bearer {key}"},
        }
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)

    async def close(self) -> None:
        await self._client.aclose()

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, str] | None = None,
    ) -> list[dict]:
        """GET /rest/v1/{table} with PostgREST filter params."""
        params = {"select": columns}
        params.update(filters or {})
        try:
            response = await self._client.get(f"/rest/v1/{table}", params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ExternalFetchError(f"select {table} failed: {exc}", endpoint=table) from exc
        except ValueError as exc:
            raise ExternalFetchError(f"select {table} returned malformed JSON", endpoint=table) from exc
        if not isinstance(data, list):
            raise ExternalFetchError(f"select {table} returned a non-list payload", endpoint=table)
        return data

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str | None:
        """POST /storage/v1/object/sign/{bucket}/{path}; returns an absolute URL."""
        endpoint = f"/storage/v1/object/sign/{bucket}/{path.lstrip('/')}"
        try:
            response = await self._client.post(endpoint, json={"expiresIn": expires_in})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ExternalFetchError(f"signing {path} failed: {exc}", endpoint="storage/sign") from exc
        except ValueError as exc:
            raise ExternalFetchError("storage signer returned malformed JSON", endpoint="storage/sign") from exc
        if not isinstance(data, dict):
            return None
        signed = data.get("signedURL") or data.get("signedUrl")
        if not signed:
            return None
        if signed.startswith("http"):
            return signed
        return f"{self.url}/storage/v1{signed}"
