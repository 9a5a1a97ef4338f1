"""
Motor de sincronizacion POS -> base de datos.

Diseño (resumen):
- Carga (o crea) el cursor del merchant (system="pos", data_type="orders")
- Calcula la ventana [inicio, fin] segun opciones y marca de agua
- Pagina ordenes del upstream por modifiedTime ascendente
- UPSERT de cada orden por clave natural + hijos (best-effort)
- Recalcula totales de la orden y los agregados diarios desde los hijos

Estrategia de idempotencia:
- UPSERT por clave natural en todas las entidades; re-ejecutar no duplica.
- El buffer incremental re-lee el borde de la ventana (seguro).
- La marca de agua solo avanza sobre el prefijo contiguo de ordenes
  procesadas con exito: una orden fallida se vuelve a leer en la proxima corrida.
"""
from __future__ import annotations

import asyncio
import time
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from possync.application.services.financials import (
    compute_daily_sales,
    compute_line_amounts,
    compute_order_financials,
    resolve_discount_amount,
)
from possync.application.services.merchant_resolver import MerchantResolver
from possync.core.config import settings
from possync.domain.entities.pos import Merchant, PosConfig
from possync.domain.entities.sales import DailySales
from possync.domain.entities.sync import (
    OrderUpsertResult,
    SyncCursor,
    SyncOptions,
    SyncProgress,
    SyncResult,
)
from possync.domain.repositories.sync_store import SyncStore
from possync.infrastructure.external.pos_api.client import PosApiClient
from possync.infrastructure.external.pos_api.types import (
    PosDiscount,
    PosLineItem,
    PosOrder,
    PosPayment,
    PosRefund,
)
from possync.shared.constants.sync_constants import (
    DATA_TYPE_ORDERS,
    MERCHANT_ERROR_KEY,
    OrderOperation,
    POS_CHANNEL,
    POS_SYSTEM,
)
from possync.shared.exceptions.sync import OrderPersistenceError, PosApiError, SyncConfigError
from possync.shared.utils.datetime_utils import (
    datetime_to_ms,
    ms_to_datetime,
    utc_date_from_ms,
    utc_now,
)
from possync.shared.utils.money_utils import ZERO, cents_to_decimal, sum_money

ClientFactory = Callable[[PosConfig], PosApiClient]


def default_client_factory(pos_config: PosConfig) -> PosApiClient:
    return PosApiClient(
        merchant_id=pos_config.merchant_id,
        api_token=pos_config.api_token,
        base_url=pos_config.base_url,
    )


def calculate_sync_window(
    last_modified_ms: Optional[int],
    options: SyncOptions,
    now: datetime,
    *,
    historical_depth_days: int,
    incremental_buffer_minutes: int,
) -> Tuple[datetime, datetime]:
    """
    Ventana de sincronizacion.

    - start_date explicito: se usa tal cual (backfill)
    - sync completo forzado o sin marca de agua: now - profundidad historica
    - incremental: marca de agua - buffer
    - fin: end_date o now; si inicio >= fin, inicio = fin - 24h
    """
    if options.start_date is not None:
        start = options.start_date
    elif options.force_full_sync or last_modified_ms is None:
        depth = options.historical_depth_days or historical_depth_days
        start = now - timedelta(days=depth)
    else:
        start = ms_to_datetime(last_modified_ms) - timedelta(minutes=incremental_buffer_minutes)

    end = options.end_date or now
    if start >= end:
        logger.warning(f"[pos-sync] Ventana invalida {start.isoformat()} >= {end.isoformat()}, usando ultimas 24h")
        start = end - timedelta(hours=24)
    return start, end


class PosSyncService:
    """
    Orquestador de sincronizacion de ordenes para un merchant.

    Nunca lanza por fallos de registros individuales: se capturan en el
    SyncResult. Solo se propagan errores de configuracion (SyncConfigError)
    y de la API upstream (PosApiError), ambos registrados en el cursor.
    """

    def __init__(
        self,
        store: SyncStore,
        *,
        client_factory: ClientFactory = default_client_factory,
        resolver: Optional[MerchantResolver] = None,
        batch_size: Optional[int] = None,
        batch_delay_ms: Optional[int] = None,
        incremental_buffer_minutes: Optional[int] = None,
        historical_depth_days: Optional[int] = None,
        channel: str = POS_CHANNEL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._client_factory = client_factory
        self._resolver = resolver or MerchantResolver(store, channel)
        self._batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self._batch_delay_ms = settings.SYNC_BATCH_DELAY_MS if batch_delay_ms is None else batch_delay_ms
        self._buffer_minutes = (
            settings.SYNC_INCREMENTAL_BUFFER_MINUTES if incremental_buffer_minutes is None
            else incremental_buffer_minutes
        )
        self._depth_days = historical_depth_days or settings.SYNC_HISTORICAL_DEPTH_DAYS
        self._channel = channel
        self._sleep = sleep
        self._active_runs = 0
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Control de corridas
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._active_runs > 0

    def stop_sync(self) -> bool:
        """
        Pide detener las corridas en curso (cooperativo: se revisa entre ordenes).

        Returns:
            bool: True si habia alguna corrida activa
        """
        if not self.is_running:
            return False
        self._stop_requested = True
        logger.warning("[pos-sync] Detencion solicitada")
        return True

    def _enter_run(self) -> None:
        self._active_runs += 1

    def _exit_run(self) -> None:
        self._active_runs -= 1
        if self._active_runs == 0:
            self._stop_requested = False

    # ------------------------------------------------------------------
    # Sync de un merchant
    # ------------------------------------------------------------------

    async def sync_merchant(self, pos_config_id: int, options: Optional[SyncOptions] = None) -> SyncResult:
        """
        Sincroniza las ordenes de un merchant dentro de una ventana.

        Args:
            pos_config_id: ID de la configuracion POS
            options: Ventana explicita, tamaño de lote, sync forzado, callback de progreso

        Returns:
            SyncResult: Contadores, errores por orden y marca de agua alcanzada

        Raises:
            SyncConfigError: Configuracion inexistente o sin credenciales
            PosApiError: API upstream inalcanzable
        """
        options = options or SyncOptions()
        started = time.monotonic()

        pos_config = await self._store.get_pos_config(pos_config_id)
        if pos_config is None:
            logger.error(f"[pos-sync] Configuracion POS {pos_config_id} no encontrada")
            raise SyncConfigError(f"Configuracion POS {pos_config_id} no encontrada", pos_config_id)

        batch_size = options.batch_size or self._batch_size
        cursor = await self._store.get_or_create_cursor(
            POS_SYSTEM, pos_config.merchant_id, DATA_TYPE_ORDERS, batch_size
        )

        if not pos_config.has_credentials:
            message = f"Configuracion POS {pos_config_id} sin credenciales (merchant_id/api_token)"
            await self._store.record_cursor_error(cursor.id, message)
            logger.error(f"[pos-sync] {message}")
            raise SyncConfigError(message, pos_config_id)

        now = utc_now()
        window_start, window_end = calculate_sync_window(
            cursor.last_modified_ms,
            options,
            now,
            historical_depth_days=self._depth_days,
            incremental_buffer_minutes=self._buffer_minutes,
        )
        await self._store.update_cursor(cursor.id, {"last_run_at": now})

        result = SyncResult(window_start=window_start, window_end=window_end)
        logger.info(
            f"[pos-sync] Inicio {pos_config.merchant_name} ({pos_config.merchant_id}) "
            f"ventana {window_start.isoformat()} -> {window_end.isoformat()}"
        )

        self._enter_run()
        client = self._client_factory(pos_config)
        try:
            merchant = await self._resolver.resolve(pos_config)
            candidate_ms, touched_dates = await self._run_pages(
                client, pos_config, merchant, options, batch_size, window_start, window_end, result
            )
        except PosApiError as e:
            await self._store.record_cursor_error(cursor.id, str(e))
            logger.error(f"[pos-sync] API POS fallo para {pos_config.merchant_id}: {e}")
            raise
        finally:
            await client.aclose()
            self._exit_run()

        await self._advance_cursor(cursor, candidate_ms, options, result)
        await self._store.update_pos_config_last_sync(pos_config.id, utc_now())

        try:
            await self.aggregate_daily_sales(
                merchant.id, window_start.date(), window_end.date(), extra_dates=touched_dates
            )
        except Exception as e:
            logger.error(f"[pos-sync] Error agregando ventas diarias de {pos_config.merchant_id}: {e}")
            result.related_errors.append({"order_id": "DAILY_SALES", "entity": "daily_sales", "error": str(e)})

        result.success = not result.systemic_failure
        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.success(
            f"[pos-sync] Fin {pos_config.merchant_id}: procesadas={result.orders_processed} "
            f"creadas={result.orders_created} actualizadas={result.orders_updated} "
            f"errores={len(result.errors)} ({result.duration_ms} ms)"
        )
        return result

    async def _run_pages(
        self,
        client: PosApiClient,
        pos_config: PosConfig,
        merchant: Merchant,
        options: SyncOptions,
        batch_size: int,
        window_start: datetime,
        window_end: datetime,
        result: SyncResult,
    ) -> Tuple[Optional[int], set]:
        """
        Recorre las paginas del upstream.

        Returns:
            Tuple: (marca de agua candidata del prefijo exitoso, fechas de orden tocadas)
        """
        start_ms = datetime_to_ms(window_start)
        end_ms = datetime_to_ms(window_end)
        offset = 0
        page = 0
        candidate_ms: Optional[int] = None
        prefix_ok = True
        touched_dates: set = set()

        while not result.stopped:
            if self._stop_requested:
                result.stopped = True
                break

            orders = await client.fetch_orders(
                modified_since_ms=start_ms,
                modified_until_ms=end_ms,
                limit=batch_size,
                offset=offset,
            )
            page += 1
            persisted_in_page = 0

            for order in orders:
                if self._stop_requested:
                    result.stopped = True
                    break
                try:
                    upsert = await self.process_order(order, pos_config, merchant, client=client)
                except Exception as e:
                    prefix_ok = False
                    result.add_error(order.id, str(e))
                    logger.error(f"[pos-sync] Orden {order.id} fallo: {e}")
                    continue

                persisted_in_page += 1
                result.orders_processed += 1
                if upsert.op == OrderOperation.CREATED:
                    result.orders_created += 1
                else:
                    result.orders_updated += 1
                result.line_items_processed += len(order.line_item_list())
                result.payments_processed += len(order.payment_list())
                result.related_errors.extend(upsert.related_errors)
                touched_dates.add(utc_date_from_ms(order.created_time))
                result.max_modified_ms = max(result.max_modified_ms or 0, order.modified_time)
                if prefix_ok:
                    candidate_ms = max(candidate_ms or 0, order.modified_time)

            if orders and persisted_in_page == 0 and not result.stopped:
                result.systemic_failure = True
                logger.critical(
                    f"[pos-sync] FALLA SISTEMICA: pagina {page} de {pos_config.merchant_id} con "
                    f"{len(orders)} ordenes y ninguna persistida"
                )

            await self._report_progress(options, result, len(orders), page, candidate_ms)

            has_more = len(orders) == batch_size
            if not has_more:
                break
            offset += batch_size
            if self._batch_delay_ms and not result.stopped:
                await self._sleep(self._batch_delay_ms / 1000)

        if result.stopped:
            logger.warning(
                f"[pos-sync] Corrida detenida para {pos_config.merchant_id} tras "
                f"{result.orders_processed} ordenes"
            )
        return candidate_ms, touched_dates

    @staticmethod
    async def _report_progress(
        options: SyncOptions,
        result: SyncResult,
        orders_in_page: int,
        page: int,
        candidate_ms: Optional[int],
    ) -> None:
        if options.progress_callback is None:
            return
        progress = SyncProgress(
            orders_processed=result.orders_processed,
            orders_in_page=orders_in_page,
            page=page,
            resume_point=ms_to_datetime(candidate_ms),
        )
        try:
            await options.progress_callback(progress)
        except Exception as e:
            logger.warning(f"[pos-sync] Callback de progreso fallo: {e}")

    async def _advance_cursor(
        self,
        cursor: SyncCursor,
        candidate_ms: Optional[int],
        options: SyncOptions,
        result: SyncResult,
    ) -> None:
        now = utc_now()
        values: Dict[str, object] = {"last_sync_at": now}

        # Fuera del sync forzado la marca solo sube, comparada contra el valor
        # actual de la fila y no contra el leido al inicio de la corrida.
        if candidate_ms is not None:
            if options.force_full_sync:
                values["last_modified_ms"] = candidate_ms
            elif not await self._store.advance_cursor_watermark(cursor.id, candidate_ms):
                logger.debug(f"[pos-sync] Marca de agua del cursor {cursor.id} ya esta en o despues de {candidate_ms}")

        if result.systemic_failure:
            await self._store.update_cursor(cursor.id, values)
            await self._store.record_cursor_error(
                cursor.id, result.error_summary() or "Falla sistemica de persistencia"
            )
            return

        values.update({
            "last_success_at": now,
            "error_count": 0,
            "last_error": result.error_summary(),
        })
        await self._store.update_cursor(cursor.id, values)

    # ------------------------------------------------------------------
    # Procesamiento de una orden
    # ------------------------------------------------------------------

    async def process_order(
        self,
        order: PosOrder,
        pos_config: PosConfig,
        merchant: Optional[Merchant] = None,
        client: Optional[PosApiClient] = None,
    ) -> OrderUpsertResult:
        """
        UPSERT de una orden y sus hijos.

        La orden se persiste y verifica primero (fallo -> OrderPersistenceError).
        Los hijos y el recalculo de totales son best-effort: sus errores se
        acumulan en related_errors y nunca se relanzan. Con client, las lineas
        sin item pero con SKU resuelven el item upstream para el costo.
        """
        if merchant is None:
            merchant = await self._resolver.resolve(pos_config)

        try:
            op, order_id = await self._store.upsert_order(self._order_values(order, merchant.id))
        except Exception as e:
            raise OrderPersistenceError(order.id, str(e)) from e

        stored = await self._store.get_order_by_external_id(merchant.id, order.id, self._channel)
        if stored is None or stored.id != order_id:
            raise OrderPersistenceError(order.id, "orden no encontrada tras el upsert")

        related_errors: List[Dict[str, str]] = []
        sale_time = ms_to_datetime(order.created_time)

        def record(entity: str, external_id: str, error: Exception) -> None:
            related_errors.append({
                "order_id": order.id,
                "entity": entity,
                "external_id": external_id,
                "error": str(error),
            })
            logger.warning(f"[pos-sync] {entity} {external_id} de la orden {order.id} fallo: {error}")

        for line_item in order.line_item_list():
            try:
                await self._upsert_line_item(line_item, order_id, merchant.id, sale_time, client)
            except Exception as e:
                record("line_item", line_item.id, e)

        for payment in order.payment_list():
            try:
                await self._upsert_payment(payment, order_id)
            except Exception as e:
                record("payment", payment.id, e)

        line_subtotal = sum_money(
            cents_to_decimal(li.price) * Decimal(li.quantity) for li in order.line_item_list()
        )
        for discount in order.discount_list():
            try:
                await self._upsert_discount(discount, order_id, line_subtotal)
            except Exception as e:
                record("discount", discount.id, e)

        for refund in order.refund_list():
            try:
                await self._upsert_refund(refund, order_id, order)
            except Exception as e:
                record("refund", refund.id, e)

        try:
            await self.recalculate_order_financials(order_id)
        except Exception as e:
            record("financials", str(order_id), e)

        return OrderUpsertResult(op=op, order_id=order_id, related_errors=related_errors)

    def _order_values(self, order: PosOrder, merchant_id: int) -> Dict[str, object]:
        customer = order.customer
        return {
            "merchant_id": merchant_id,
            "external_order_id": order.id,
            "channel": self._channel,
            "order_number": order.order_number,
            "created_time": ms_to_datetime(order.created_time),
            "modified_time": ms_to_datetime(order.modified_time),
            "order_date": utc_date_from_ms(order.created_time),
            "order_state": order.state,
            "payment_state": order.payment_state,
            "customer_id": customer.id if customer else None,
            "customer_name": customer.full_name if customer else None,
            "employee_id": order.employee.id if order.employee else None,
            "tax_amount": cents_to_decimal(order.tax_amount),
            "total": cents_to_decimal(order.total),
            "notes": order.note,
        }

    async def _upsert_line_item(
        self,
        line_item: PosLineItem,
        order_id: int,
        merchant_id: int,
        sale_time: datetime,
        client: Optional[PosApiClient] = None,
    ) -> None:
        external_item_id = line_item.item.id if line_item.item else None

        existing = await self._store.get_line_item_by_external_id(line_item.id)
        if existing is None and not external_item_id and line_item.item_code and client is not None:
            try:
                item = await client.find_item_by_sku(line_item.item_code)
            except PosApiError as e:
                logger.warning(f"[pos-sync] Busqueda por SKU {line_item.item_code} fallo, costo en cero: {e}")
                item = None
            if item is not None:
                external_item_id = item.id

        if existing is not None:
            unit_cost = existing.unit_cost_at_sale
            external_item_id = external_item_id or existing.external_item_id
        elif external_item_id:
            unit_cost = await self._store.get_cost_at(merchant_id, external_item_id, sale_time) or ZERO
        else:
            unit_cost = ZERO

        quantity = Decimal(line_item.quantity)
        amounts = compute_line_amounts(line_item.price, quantity, unit_cost)
        await self._store.upsert_line_item({
            "order_id": order_id,
            "external_line_item_id": line_item.id,
            "external_item_id": external_item_id,
            "item_name": line_item.name,
            "sku": line_item.item_code,
            "quantity": quantity,
            "unit_price": amounts.unit_price,
            "line_total": amounts.line_total,
            "unit_cost_at_sale": unit_cost,
            "line_cogs": amounts.line_cogs,
            "line_margin": amounts.line_margin,
            "discount_amount": ZERO,
            "notes": line_item.note,
        })

    async def _upsert_payment(self, payment: PosPayment, order_id: int) -> None:
        card = payment.card_transaction
        await self._store.upsert_payment({
            "order_id": order_id,
            "external_payment_id": payment.natural_id,
            "amount": cents_to_decimal(payment.amount),
            "tip_amount": cents_to_decimal(payment.tip_amount),
            "tax_amount": cents_to_decimal(payment.tax_amount),
            "cashback_amount": cents_to_decimal(payment.cashback_amount),
            "payment_method": payment.method,
            "result": payment.result,
            "created_time": ms_to_datetime(payment.created_time),
            "card_type": card.type if card else None,
            "card_last4": card.last4 if card else None,
            "auth_code": card.auth_code if card else None,
        })

    async def _upsert_discount(self, discount: PosDiscount, order_id: int, line_subtotal: Decimal) -> None:
        await self._store.upsert_discount({
            "order_id": order_id,
            "external_discount_id": discount.id,
            "discount_name": discount.name,
            "discount_type": discount.kind,
            "discount_value": Decimal(discount.percentage) if discount.percentage is not None else None,
            "discount_amount": resolve_discount_amount(discount.amount, discount.percentage, line_subtotal),
        })

    async def _upsert_refund(self, refund: PosRefund, order_id: int, order: PosOrder) -> None:
        created_ms = refund.created_time or order.modified_time
        await self._store.upsert_refund({
            "order_id": order_id,
            "external_refund_id": refund.id,
            "refund_amount": abs(cents_to_decimal(refund.amount)),
            "refund_date": utc_date_from_ms(created_ms),
            "created_time": ms_to_datetime(created_ms),
            "original_payment_id": refund.payment.id if refund.payment else None,
        })

    async def recalculate_order_financials(self, order_id: int) -> Dict[str, Decimal]:
        """Recalcula los campos derivados de la orden desde los hijos guardados."""
        financials = compute_order_financials(
            await self._store.list_line_items(order_id),
            await self._store.list_payments(order_id),
            await self._store.list_discounts(order_id),
            await self._store.list_refunds(order_id),
        )
        await self._store.update_order_financials(order_id, financials)
        return financials

    # ------------------------------------------------------------------
    # Agregados diarios
    # ------------------------------------------------------------------

    async def aggregate_daily_sales(
        self,
        merchant_id: int,
        start_date: date,
        end_date: date,
        extra_dates: Iterable[date] = (),
    ) -> List[DailySales]:
        """
        Recalcula desde cero el agregado diario de cada fecha con ordenes
        en [start_date, end_date] mas las fechas extra. Idempotente.
        """
        dates = set(await self._store.list_order_dates(merchant_id, self._channel, start_date, end_date))
        dates.update(extra_dates)

        rows: List[DailySales] = []
        for sales_date in sorted(dates):
            orders = await self._store.list_orders_by_date(merchant_id, self._channel, sales_date)
            if not orders:
                continue
            line_items = {o.id: await self._store.list_line_items(o.id) for o in orders}
            payments = {o.id: await self._store.list_payments(o.id) for o in orders}
            refunds = {o.id: await self._store.list_refunds(o.id) for o in orders}

            metrics = compute_daily_sales(orders, line_items, payments, refunds)
            row = await self._store.upsert_daily_sales({
                "merchant_id": merchant_id,
                "channel": self._channel,
                "sales_date": sales_date,
                **metrics,
            })
            rows.append(row)

        logger.info(f"[pos-sync] Ventas diarias recalculadas para merchant {merchant_id}: {len(rows)} dias")
        return rows

    # ------------------------------------------------------------------
    # Todos los merchants / estado
    # ------------------------------------------------------------------

    async def sync_all_merchants(self, options: Optional[SyncOptions] = None) -> Dict[str, SyncResult]:
        """
        Sincroniza todas las configuraciones POS activas, una tras otra.
        Un error de un merchant no detiene al resto.
        """
        results: Dict[str, SyncResult] = {}
        # Activa durante todo el recorrido: stop_sync corta entre merchants
        self._enter_run()
        try:
            for pos_config in await self._store.list_active_pos_configs():
                if self._stop_requested:
                    logger.warning(f"[pos-sync] Sync de todos los merchants detenido antes de {pos_config.merchant_id}")
                    break
                try:
                    results[pos_config.merchant_id] = await self.sync_merchant(pos_config.id, options)
                except Exception as e:
                    logger.error(f"[pos-sync] Merchant {pos_config.merchant_id} fallo: {e}")
                    failed = SyncResult(success=False)
                    failed.add_error(MERCHANT_ERROR_KEY, str(e))
                    results[pos_config.merchant_id] = failed
        finally:
            self._exit_run()
        return results

    async def get_sync_status(self) -> List[Dict[str, object]]:
        """Estado del cursor de ordenes de cada configuracion POS activa."""
        status = []
        for pos_config in await self._store.list_active_pos_configs():
            cursor = await self._store.get_cursor(POS_SYSTEM, pos_config.merchant_id, DATA_TYPE_ORDERS)
            status.append({
                "pos_config_id": pos_config.id,
                "merchant_id": pos_config.merchant_id,
                "merchant_name": pos_config.merchant_name,
                "last_sync_at": cursor.last_sync_at if cursor else None,
                "last_success_at": cursor.last_success_at if cursor else None,
                "error_count": cursor.error_count if cursor else 0,
                "last_error": cursor.last_error if cursor else None,
                "last_modified_ms": cursor.last_modified_ms if cursor else None,
                "is_running": self.is_running,
            })
        return status
