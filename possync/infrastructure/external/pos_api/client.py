"""
Cliente HTTP async de la API POS.

Requisitos cubiertos:
- httpx (AsyncClient)
- paginacion por limit/offset
- rate-limit/backoff (429, 5xx) respetando Retry-After
- filtro por ventana de modifiedTime para ordenes
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from possync.core.config import settings
from possync.infrastructure.external.pos_api.types import PosItem, PosItemStock, PosOrder
from possync.shared.constants.sync_constants import ORDER_BY_MODIFIED_ASC, ORDER_EXPAND
from possync.shared.exceptions.sync import PosApiError


class PosApiClient:
    """
    Cliente de la API POS para un merchant.

    Importante:
    - No convierte montos ni fechas: eso lo decide el motor de sync.
    - Un transport de httpx puede inyectarse (tests con httpx.MockTransport).
    """

    def __init__(
        self,
        *,
        merchant_id: str,
        api_token: str,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        max_retries: Optional[int] = None,
        min_backoff_s: Optional[float] = None,
        max_backoff_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._merchant_id = merchant_id
        self._base_url = (base_url or settings.POS_DEFAULT_BASE_URL).rstrip("/")
        self._max_retries = settings.POS_HTTP_MAX_RETRIES if max_retries is None else max_retries
        self._min_backoff_s = settings.POS_HTTP_MIN_BACKOFF_SECONDS if min_backoff_s is None else min_backoff_s
        self._max_backoff_s = settings.POS_HTTP_MAX_BACKOFF_SECONDS if max_backoff_s is None else max_backoff_s
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            timeout=timeout_s or settings.POS_HTTP_TIMEOUT_SECONDS,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
            },
        )

    async def __aenter__(self) -> "PosApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url}/v3/merchants/{self._merchant_id}/{endpoint}"

    async def fetch_orders(
        self,
        *,
        modified_since_ms: int,
        modified_until_ms: int,
        limit: int,
        offset: int = 0,
    ) -> List[PosOrder]:
        """
        Trae una pagina de ordenes modificadas en [modified_since_ms, modified_until_ms],
        ordenadas por modifiedTime ascendente y con colecciones hijas expandidas.
        """
        params: List[tuple[str, Any]] = [
            ("limit", limit),
            ("offset", offset),
            ("expand", ORDER_EXPAND),
            ("orderBy", ORDER_BY_MODIFIED_ASC),
            ("modifiedTime.min", modified_since_ms),
            ("modifiedTime.max", modified_until_ms),
        ]
        payload = await self._request_json("GET", self._url("orders"), params=params)
        return self._decode_elements(payload, PosOrder, "orders")

    async def fetch_item_stocks(self, *, limit: int, offset: int = 0) -> List[PosItemStock]:
        """Trae una pagina de niveles de stock con el item expandido."""
        params = [("limit", limit), ("offset", offset), ("expand", "item")]
        payload = await self._request_json("GET", self._url("item_stocks"), params=params)
        return self._decode_elements(payload, PosItemStock, "item_stocks")

    async def find_item_by_sku(self, sku: str) -> Optional[PosItem]:
        """Busca un item por SKU; None si no existe."""
        params = [("filter", f"sku={sku}"), ("limit", 1)]
        payload = await self._request_json("GET", self._url("items"), params=params)
        items = self._decode_elements(payload, PosItem, "items")
        return items[0] if items else None

    @staticmethod
    def _decode_elements(payload: dict[str, Any], model: Any, what: str) -> List[Any]:
        try:
            return [model.model_validate(raw) for raw in payload.get("elements") or []]
        except ValidationError as e:
            raise PosApiError(f"Payload de {what} invalido: {e}") from e

    async def _request_json(
        self, method: str, url: str, *, params: List[tuple[str, Any]]
    ) -> dict[str, Any]:
        """
        Request HTTP con backoff para 429/5xx.

        Estrategia:
        - 429: respeta Retry-After si existe, si no exponencial con jitter simple.
        - 5xx: exponencial con jitter.
        - 4xx (no 429) y errores de transporte: PosApiError inmediato.
        """
        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.request(method, url, params=params)
            except httpx.HTTPError as e:
                raise PosApiError(f"API POS inalcanzable ({url}): {e}") from e

            if 200 <= resp.status_code < 300:
                try:
                    return resp.json()
                except ValueError as e:
                    raise PosApiError(f"Respuesta no JSON de la API POS: {resp.text[:200]}") from e

            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                if attempt >= self._max_retries:
                    raise PosApiError(
                        f"API POS error {resp.status_code} tras {attempt} reintentos: {resp.text[:500]}",
                        http_status=resp.status_code,
                    )

                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        sleep_s = float(retry_after)
                    except ValueError:
                        sleep_s = self._min_backoff_s
                else:
                    base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
                    sleep_s = base + (0.15 * base)

                logger.warning(
                    f"[pos-api] {resp.status_code} en {url}, reintento {attempt + 1}/{self._max_retries} "
                    f"en {sleep_s:.2f}s"
                )
                await self._sleep(sleep_s)
                continue

            raise PosApiError(
                f"API POS request fallo {resp.status_code}: {resp.text[:500]}",
                http_status=resp.status_code,
            )

        raise PosApiError("API POS: reintentos agotados")
