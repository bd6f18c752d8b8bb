"""
Active Order Store.

Owns the in-progress order of every table and drives the table state
machine. All operations are keyed by table id and run under that table's
lock; different tables never block each other.

Every mutation follows the same steps:
1. Validate input (quantities, notes, reasons).
2. Under the table lock: order exists, revision matches, order is not
   closed, the state machine accepts the event, then operation checks.
3. Mutate the aggregate and bump the revision.
4. Persist table state + snapshot in one transaction before returning.
   A failed write is reported as a degraded success.
5. Notify other devices (best-effort, outside the lock).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.constants import (
    AuditAction,
    Limits,
    TableEvent,
    TableState,
)
from pos_shared.config.logging import orders_logger as logger
from pos_shared.config.settings import settings
from pos_shared.infrastructure.db import get_session_factory, session_scope
from pos_shared.utils.exceptions import (
    ConflictError,
    FinalizationRejectedError,
    FinalizationTimeoutError,
    ItemAlreadySentError,
    NoActiveOrderError,
    NotFoundError,
    NothingToSendError,
    OrderClosedError,
    PersistenceFailureError,
    RevisionConflictError,
    TableUnavailableError,
    ValidationError,
)
from pos_core.repositories import SnapshotRepository, TableRepository
from pos_core.schemas import (
    ActiveOrderOutput,
    MutationResult,
    RoutingResult,
    SaleRequest,
    TableOutput,
    TransferResult,
)
from pos_core.services.audit import log_table_action
from pos_core.services.collaborators import ProductCatalog, SaleFinalizer, TicketDispatcher
from pos_core.services.locks import TableLockManager
from pos_core.services.notifications import OrderChangeNotifier
from .order_aggregate import ActiveOrder, TableAggregate
from .printer_routing import PrinterRoutingTable
from .table_registry import TableRegistry
from .table_state_machine import transition
from .ticket_router import TicketRouter

UNROUTED_WARNING = "Sin comandera activa: hay ítems que no se enviaron a cocina"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("La cantidad debe ser un número entero", field="quantity", value=quantity)
    if not Limits.MIN_QUANTITY <= quantity <= Limits.MAX_QUANTITY:
        raise ValidationError(
            f"La cantidad debe estar entre {Limits.MIN_QUANTITY} y {Limits.MAX_QUANTITY}",
            field="quantity",
            value=quantity,
        )


def _clean_text(value: str | None, max_length: int, field: str) -> str | None:
    """Strip; empty becomes None; too long is rejected."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(
            f"El campo {field} supera los {max_length} caracteres",
            field=field,
            length=len(value),
        )
    return value


class ActiveOrderService:
    """
    Zero-or-one active order per table, kept consistent with the table state.

    Args:
        registry: In-memory table aggregates.
        catalog: Resolves product name, price and category on add.
        printers: Printer routing table used on send-to-kitchen.
        finalizer: Sale finalization collaborator (required by finalize()).
        notifier: Cross-device notifications.
        dispatcher: Optional delivery of routed tickets to printers.
        session_factory: Where snapshots are written.
        locks: Per-table locks, shared with the reconciliation service.
        router: Ticket router (built with ``clock`` if omitted).
        clock: Source of timestamps.
        finalize_timeout: Seconds to wait for the finalizer.
    """

    def __init__(
        self,
        registry: TableRegistry,
        catalog: ProductCatalog,
        printers: PrinterRoutingTable,
        finalizer: SaleFinalizer | None = None,
        notifier: OrderChangeNotifier | None = None,
        dispatcher: TicketDispatcher | None = None,
        session_factory: sessionmaker[Session] | None = None,
        locks: TableLockManager | None = None,
        router: TicketRouter | None = None,
        clock: Callable[[], datetime] | None = None,
        finalize_timeout: float | None = None,
    ):
        self._registry = registry
        self._catalog = catalog
        self._printers = printers
        self._finalizer = finalizer
        self._notifier = notifier if notifier is not None else OrderChangeNotifier()
        self._dispatcher = dispatcher
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or _utcnow
        self._router = router or TicketRouter(clock=self._clock)
        self._finalize_timeout = (
            settings.finalize_timeout_seconds if finalize_timeout is None else finalize_timeout
        )
        self.locks = locks or TableLockManager()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_order(self, table_id: int) -> ActiveOrderOutput | None:
        with self.locks.hold(table_id):
            aggregate = self._registry.get(table_id)
            return aggregate.order.to_output() if aggregate.order is not None else None

    def get_table(self, table_id: int) -> TableOutput:
        with self.locks.hold(table_id):
            return self._registry.get(table_id).to_output()

    def has_active_order(self, table_id: int) -> bool:
        with self.locks.hold(table_id):
            return self._registry.get(table_id).order is not None

    def list_tables(self) -> list[TableOutput]:
        outputs = []
        for aggregate in self._registry.all():
            with self.locks.hold(aggregate.table_id):
                outputs.append(aggregate.to_output())
        return outputs

    # =========================================================================
    # Order lifecycle
    # =========================================================================

    def start_or_ensure(
        self,
        table_id: int,
        origin: str | None = None,
        waiter: str | None = None,
    ) -> MutationResult:
        """
        Open an empty order on a LIBRE/RESERVADA table, or return the
        existing one unchanged.

        Raises:
            NotFoundError: Unknown table.
            TableUnavailableError: Table deactivated or out of service.
        """
        origin = self._origin(origin)
        waiter = _clean_text(waiter, Limits.MAX_ORIGIN_LENGTH, "waiter")

        with self.locks.hold(table_id):
            aggregate = self._registry.require_available(table_id)
            if aggregate.order is not None:
                return self._result(aggregate)

            new_state = transition(aggregate.state, TableEvent.OPEN_ORDER, table_id=table_id)
            aggregate.order = ActiveOrder.open(table_id, self._clock(), origin=origin, waiter=waiter)
            aggregate.state = new_state
            result = self._commit([aggregate])

        logger.info("Order opened", table_id=table_id, order_id=aggregate.order.order_id, origin=origin)
        self._notify(result, origin)
        return result

    def add_item(
        self,
        table_id: int,
        product_id: int,
        quantity: int,
        expected_revision: int,
        notes: str | None = None,
        origin: str | None = None,
    ) -> MutationResult:
        """
        Add a product, merging into an unsent line of the same product and
        notes. The unit price is captured when the line is created.
        """
        _validate_quantity(quantity)
        notes = _clean_text(notes, Limits.MAX_NOTES_LENGTH, "notes")
        origin = self._origin(origin)

        with self.locks.hold(table_id):
            aggregate, order = self._open_order_for_change(table_id, expected_revision)
            new_state = transition(aggregate.state, TableEvent.MODIFY_ORDER, table_id=table_id)

            product = self._catalog.resolve(product_id)
            existing = order.find_mergeable(product.product_id, notes)
            if existing is not None and existing.quantity + quantity > Limits.MAX_QUANTITY:
                raise ValidationError(
                    f"La cantidad total del ítem supera {Limits.MAX_QUANTITY}",
                    table_id=table_id,
                    line_id=existing.line_id,
                )

            now = self._clock()
            line = order.add_product(product, quantity, notes, now)
            order.touch(now, origin)
            aggregate.state = new_state
            result = self._commit([aggregate])

        logger.info(
            "Item added",
            table_id=table_id,
            line_id=line.line_id,
            product_id=product_id,
            quantity=quantity,
            revision=result.revision,
        )
        self._notify(result, origin)
        return result

    def update_quantity(
        self,
        table_id: int,
        line_id: int,
        quantity: int,
        expected_revision: int,
        override: bool = False,
        origin: str | None = None,
    ) -> MutationResult:
        """Set the quantity of a line. Sent lines require ``override``."""
        _validate_quantity(quantity)
        origin = self._origin(origin)

        with self.locks.hold(table_id):
            aggregate, order = self._open_order_for_change(table_id, expected_revision)
            new_state = transition(aggregate.state, TableEvent.MODIFY_ORDER, table_id=table_id)
            line = self._require_line(table_id, order, line_id, override)

            audits = []
            if line.sent:
                logger.warning(
                    "Supervisor override: sent item quantity changed",
                    table_id=table_id,
                    line_id=line_id,
                    old_quantity=line.quantity,
                    new_quantity=quantity,
                    origin=origin,
                )
                audits.append(dict(
                    action=AuditAction.ITEM_OVERRIDE_UPDATED,
                    table_id=table_id,
                    order_id=order.order_id,
                    origin=origin,
                    details={"line_id": line_id, "from": line.quantity, "to": quantity},
                ))

            line.quantity = quantity
            order.touch(self._clock(), origin)
            aggregate.state = new_state
            result = self._commit([aggregate], audits=audits)

        self._notify(result, origin)
        return result

    def remove_item(
        self,
        table_id: int,
        line_id: int,
        expected_revision: int,
        override: bool = False,
        origin: str | None = None,
    ) -> MutationResult:
        """
        Remove a line. Sent lines require ``override``. Removing the last
        line leaves an empty order; it must be canceled or finalized.
        """
        origin = self._origin(origin)

        with self.locks.hold(table_id):
            aggregate, order = self._open_order_for_change(table_id, expected_revision)
            new_state = transition(aggregate.state, TableEvent.MODIFY_ORDER, table_id=table_id)
            line = self._require_line(table_id, order, line_id, override)

            audits = []
            if line.sent:
                logger.warning(
                    "Supervisor override: sent item removed",
                    table_id=table_id,
                    line_id=line_id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    origin=origin,
                )
                audits.append(dict(
                    action=AuditAction.ITEM_OVERRIDE_REMOVED,
                    table_id=table_id,
                    order_id=order.order_id,
                    origin=origin,
                    details={
                        "line_id": line_id,
                        "product_id": line.product_id,
                        "quantity": line.quantity,
                        "printer_id": line.printer_id,
                    },
                ))

            order.remove_line(line_id)
            order.touch(self._clock(), origin)
            aggregate.state = new_state
            result = self._commit([aggregate], audits=audits)

        self._notify(result, origin)
        return result

    def send_to_kitchen(
        self,
        table_id: int,
        expected_revision: int,
        origin: str | None = None,
    ) -> MutationResult:
        """
        Mark every unsent line as sent and route the batch to printers.

        Lines no printer can take stay unsent so they can be sent again once
        a printer is back; the result carries a warning.

        Raises:
            NothingToSendError: Every line was already sent.
        """
        origin = self._origin(origin)

        with self.locks.hold(table_id):
            aggregate, order = self._require_order(table_id)
            self._check_revision(table_id, order, expected_revision)
            self._ensure_not_finalizing(table_id, order)
            new_state = transition(aggregate.state, TableEvent.SEND_TO_KITCHEN, table_id=table_id)

            batch = order.unsent_lines()
            if not batch:
                raise NothingToSendError(table_id)

            routing = self._router.route(
                batch,
                self._printers.destinations_for(aggregate.sector_id),
                table_id=table_id,
                table_number=aggregate.number,
            )
            if not routing.tickets:
                # No active printer: nothing reaches the kitchen, lines stay unsent
                result = self._result(aggregate, routing=routing)
                result.warning = UNROUTED_WARNING
                return result

            for line in batch:
                printer_id = routing.assignments.get(line.line_id)
                if printer_id is not None:
                    line.sent = True
                    line.printer_id = printer_id

            order.touch(self._clock(), origin)
            aggregate.state = new_state
            result = self._commit([aggregate], routing=routing)
            if routing.unrouted:
                result.warning = (
                    f"{result.warning}; {UNROUTED_WARNING}" if result.warning else UNROUTED_WARNING
                )

        logger.info(
            "Items sent to kitchen",
            table_id=table_id,
            lines=len(batch),
            tickets=len(routing.tickets),
            unrouted=len(routing.unrouted),
            degraded=routing.degraded,
        )
        self._dispatch(result, routing)
        self._notify(result, origin)
        return result

    def request_bill(
        self,
        table_id: int,
        expected_revision: int,
        origin: str | None = None,
    ) -> MutationResult:
        """Close the order to changes (CUENTA_PEDIDA)."""
        origin = self._origin(origin)

        with self.locks.hold(table_id):
            aggregate, order = self._require_order(table_id)
            self._check_revision(table_id, order, expected_revision)
            self._ensure_not_finalizing(table_id, order)
            new_state = transition(aggregate.state, TableEvent.REQUEST_BILL, table_id=table_id)

            order.touch(self._clock(), origin)
            aggregate.state = new_state
            result = self._commit([aggregate])

        logger.info("Bill requested", table_id=table_id, subtotal_cents=order.subtotal_cents)
        self._notify(result, origin)
        return result

    async def finalize(
        self,
        table_id: int,
        expected_revision: int,
        origin: str | None = None,
    ) -> MutationResult:
        """
        Hand the order to the sale finalization collaborator.

        The table lock is not held while awaiting the collaborator; the
        order is flagged as finalizing instead so nothing else touches it.
        On any failure the order is kept unchanged and can be retried.

        Raises:
            FinalizationRejectedError: The collaborator rejected the sale.
            FinalizationTimeoutError: No definitive answer (outcome unknown).
            ConflictError: Another finalize is already in progress.
        """
        origin = self._origin(origin)

        with self.locks.hold(table_id):
            aggregate, order = self._require_order(table_id)
            self._check_revision(table_id, order, expected_revision)
            if order.finalizing:
                raise ConflictError(
                    f"La venta de la mesa {table_id} ya se está cerrando",
                    table_id=table_id,
                )
            new_state = transition(aggregate.state, TableEvent.FINALIZE, table_id=table_id)
            if self._finalizer is None:
                raise FinalizationRejectedError(table_id, "no hay servicio de cierre de ventas configurado")

            order.finalizing = True
            order_id = order.order_id
            request = SaleRequest(
                table_id=table_id,
                table_number=aggregate.number,
                order_id=order_id,
                items=[line.to_output() for line in order.items],
                subtotal_cents=order.subtotal_cents,
                origin=origin,
                waiter=order.waiter,
            )

        try:
            sale = await asyncio.wait_for(
                self._finalizer.finalize(request),
                timeout=self._finalize_timeout,
            )
        except asyncio.TimeoutError as e:
            self._abort_finalizing(table_id, order_id)
            raise FinalizationTimeoutError(table_id, order_id=order_id) from e
        except BaseException:
            self._abort_finalizing(table_id, order_id)
            raise

        if not sale.accepted:
            self._abort_finalizing(table_id, order_id)
            raise FinalizationRejectedError(
                table_id,
                sale.reason or "venta rechazada",
                order_id=order_id,
            )

        with self.locks.hold(table_id):
            aggregate = self._registry.get(table_id)
            if aggregate.order is None or aggregate.order.order_id != order_id:
                # Canceled or reset while the sale was being closed
                logger.warning(
                    "Order changed during finalization",
                    table_id=table_id,
                    order_id=order_id,
                    sale_id=sale.sale_id,
                )
                return self._result(aggregate, sale_id=sale.sale_id)

            aggregate.order = None
            aggregate.state = new_state
            result = self._commit(
                [aggregate],
                audits=[dict(
                    action=AuditAction.SALE_FINALIZED,
                    table_id=table_id,
                    order_id=order_id,
                    origin=origin,
                    details={"sale_id": sale.sale_id, "subtotal_cents": request.subtotal_cents},
                )],
                sale_id=sale.sale_id,
            )

        logger.info("Sale finalized", table_id=table_id, order_id=order_id, sale_id=sale.sale_id)
        self._notify(result, origin, cleared=True)
        return result

    def cancel(
        self,
        table_id: int,
        reason: str,
        origin: str | None = None,
    ) -> MutationResult:
        """
        Discard the order and free the table. No revision check: a
        cancellation always wins, including after items were sent and
        while a finalize is awaiting the sales service.
        """
        reason = _clean_text(reason, Limits.MAX_REASON_LENGTH, "reason")
        if reason is None:
            raise ValidationError("Se requiere un motivo de cancelación", field="reason", table_id=table_id)
        origin = self._origin(origin)

        with self.locks.hold(table_id):
            aggregate, order = self._require_order(table_id)
            new_state = transition(aggregate.state, TableEvent.CANCEL_ORDER, table_id=table_id)

            aggregate.order = None
            aggregate.state = new_state
            result = self._commit(
                [aggregate],
                audits=[dict(
                    action=AuditAction.ORDER_CANCELED,
                    table_id=table_id,
                    order_id=order.order_id,
                    reason=reason,
                    origin=origin,
                    details={
                        "revision": order.revision,
                        "subtotal_cents": order.subtotal_cents,
                        "sent_lines": sum(1 for line in order.items if line.sent),
                    },
                )],
            )

        self._notify(result, origin, cleared=True)
        return result

    # =========================================================================
    # Table-level operations (no order involved)
    # =========================================================================

    def reserve(self, table_id: int, origin: str | None = None) -> MutationResult:
        return self._change_table_state(table_id, TableEvent.RESERVE, origin, require_active=True)

    def cancel_reservation(self, table_id: int, origin: str | None = None) -> MutationResult:
        return self._change_table_state(table_id, TableEvent.CANCEL_RESERVATION, origin)

    def mark_out_of_service(self, table_id: int, origin: str | None = None) -> MutationResult:
        return self._change_table_state(table_id, TableEvent.MARK_OUT_OF_SERVICE, origin)

    def restore_service(self, table_id: int, origin: str | None = None) -> MutationResult:
        return self._change_table_state(table_id, TableEvent.RESTORE, origin)

    def _change_table_state(
        self,
        table_id: int,
        event: TableEvent,
        origin: str | None,
        require_active: bool = False,
    ) -> MutationResult:
        origin = self._origin(origin)
        with self.locks.hold(table_id):
            aggregate = self._registry.get(table_id)
            if require_active and not aggregate.is_active:
                raise TableUnavailableError(table_id, "mesa desactivada")
            new_state = transition(aggregate.state, event, table_id=table_id)
            previous = aggregate.state
            aggregate.state = new_state
            result = self._commit([aggregate])

        logger.info(
            "Table state changed",
            table_id=table_id,
            event=event.value,
            from_state=previous.value,
            to_state=new_state.value,
        )
        self._notify(result, origin)
        return result

    # =========================================================================
    # Transfer
    # =========================================================================

    def transfer_items(
        self,
        source_table_id: int,
        target_table_id: int,
        expected_revision: int,
        line_ids: Sequence[int] | None = None,
        origin: str | None = None,
    ) -> TransferResult:
        """
        Move lines (all by default) to another table ("cambiar de mesa").

        The target order is opened if needed. The source keeps its order,
        possibly empty, so it can be canceled or keep taking items.
        """
        if source_table_id == target_table_id:
            raise ValidationError(
                "La mesa de destino debe ser distinta de la de origen",
                table_id=source_table_id,
            )
        origin = self._origin(origin)

        with self.locks.hold_many(source_table_id, target_table_id):
            source, source_order = self._open_order_for_change(source_table_id, expected_revision)
            source_state = transition(source.state, TableEvent.MODIFY_ORDER, table_id=source_table_id)
            target = self._registry.require_available(target_table_id)

            if target.order is not None:
                if target.state == TableState.CUENTA_PEDIDA:
                    raise OrderClosedError(target_table_id)
                self._ensure_not_finalizing(target_table_id, target.order)
                target_state = transition(target.state, TableEvent.MODIFY_ORDER, table_id=target_table_id)
            else:
                target_state = transition(target.state, TableEvent.OPEN_ORDER, table_id=target_table_id)

            moved_ids = self._select_lines(source_table_id, source_order, line_ids)
            moving = [line for line in source_order.items if line.line_id in moved_ids]
            if target.order is not None and target.order.absorb_exceeds(moving, Limits.MAX_QUANTITY):
                raise ValidationError(
                    f"La transferencia supera la cantidad máxima de {Limits.MAX_QUANTITY} por ítem",
                    table_id=target_table_id,
                )

            now = self._clock()
            opened = target.order is None
            if opened:
                target.order = ActiveOrder.open(
                    target_table_id, now, origin=origin, waiter=source_order.waiter
                )
            target.order.absorb(source_order.detach_lines(moved_ids))
            source_order.touch(now, origin)
            # A freshly opened order is born with the moved lines at revision 0
            if not opened:
                target.order.touch(now, origin)
            source.state = source_state
            target.state = target_state

            warning = self._save(
                [source, target],
                audits=[dict(
                    action=AuditAction.ITEMS_TRANSFERRED,
                    table_id=source_table_id,
                    order_id=source_order.order_id,
                    origin=origin,
                    details={
                        "target_table_id": target_table_id,
                        "target_order_id": target.order.order_id,
                        "line_ids": sorted(moved_ids),
                    },
                )],
            )
            result = TransferResult(
                source=self._result(source, warning=warning),
                target=self._result(target, warning=warning),
                moved_line_ids=sorted(moved_ids),
            )

        logger.info(
            "Items transferred",
            source_table_id=source_table_id,
            target_table_id=target_table_id,
            lines=len(moved_ids),
        )
        self._notify(result.source, origin)
        self._notify(result.target, origin)
        return result

    def _select_lines(
        self,
        table_id: int,
        order: ActiveOrder,
        line_ids: Sequence[int] | None,
    ) -> set[int]:
        if line_ids is None:
            selected = {line.line_id for line in order.items}
        else:
            selected = set(line_ids)
            for line_id in selected:
                if order.get_line(line_id) is None:
                    raise NotFoundError("Ítem", line_id, table_id=table_id)
        if not selected:
            raise ValidationError("No hay ítems para transferir", table_id=table_id)
        return selected

    # =========================================================================
    # Guards
    # =========================================================================

    def _origin(self, origin: str | None) -> str:
        return _clean_text(origin, Limits.MAX_ORIGIN_LENGTH, "origin") or settings.default_origin

    def _require_order(self, table_id: int) -> tuple[TableAggregate, ActiveOrder]:
        aggregate = self._registry.get(table_id)
        if aggregate.order is None:
            raise NoActiveOrderError(table_id)
        return aggregate, aggregate.order

    def _check_revision(self, table_id: int, order: ActiveOrder, expected_revision: int) -> None:
        if expected_revision != order.revision:
            raise RevisionConflictError(table_id, expected=expected_revision, actual=order.revision)

    def _ensure_not_finalizing(self, table_id: int, order: ActiveOrder) -> None:
        if order.finalizing:
            raise ConflictError(
                f"La venta de la mesa {table_id} se está cerrando",
                table_id=table_id,
            )

    def _open_order_for_change(
        self,
        table_id: int,
        expected_revision: int,
    ) -> tuple[TableAggregate, ActiveOrder]:
        """Order exists, revision matches, and the bill was not requested."""
        aggregate, order = self._require_order(table_id)
        self._check_revision(table_id, order, expected_revision)
        if aggregate.state == TableState.CUENTA_PEDIDA:
            raise OrderClosedError(table_id)
        self._ensure_not_finalizing(table_id, order)
        return aggregate, order

    def _require_line(self, table_id: int, order: ActiveOrder, line_id: int, override: bool):
        line = order.get_line(line_id)
        if line is None:
            raise NotFoundError("Ítem", line_id, table_id=table_id)
        if line.sent and not override:
            raise ItemAlreadySentError(table_id, line_id)
        return line

    def _abort_finalizing(self, table_id: int, order_id: str) -> None:
        with self.locks.hold(table_id):
            aggregate = self._registry.find(table_id)
            if aggregate is not None and aggregate.order is not None and aggregate.order.order_id == order_id:
                aggregate.order.finalizing = False

    # =========================================================================
    # Persistence, results, side effects
    # =========================================================================

    def _persist(self, aggregates: Iterable[TableAggregate], audits: Iterable[dict[str, Any]] = ()) -> None:
        """
        Write table states, snapshots and audit rows in one transaction.

        Raises:
            PersistenceFailureError: If the transaction fails.
        """
        aggregates = list(aggregates)
        try:
            with session_scope(self._session_factory) as db:
                tables = TableRepository(db)
                snapshots = SnapshotRepository(db)
                for aggregate in aggregates:
                    tables.set_status(aggregate.table_id, aggregate.state)
                    if aggregate.order is None:
                        snapshots.delete(aggregate.table_id)
                    else:
                        snapshots.save(aggregate.order.to_snapshot())
                for entry in audits:
                    log_table_action(db, **entry)
        except SQLAlchemyError as e:
            raise PersistenceFailureError(
                "el guardado de la venta activa",
                table_ids=[a.table_id for a in aggregates],
                error=str(e),
            ) from e

    def _save(self, aggregates: list[TableAggregate], audits: Iterable[dict[str, Any]] = ()) -> str | None:
        """Persist; on failure return the warning for a degraded result."""
        for aggregate in aggregates:
            if not aggregate.is_consistent():
                logger.error(
                    "Table invariant violated after mutation",
                    table_id=aggregate.table_id,
                    state=aggregate.state.value,
                    has_order=aggregate.order is not None,
                )
        try:
            self._persist(aggregates, audits)
        except PersistenceFailureError as e:
            return e.detail
        return None

    def _commit(
        self,
        aggregates: list[TableAggregate],
        audits: Iterable[dict[str, Any]] = (),
        routing: RoutingResult | None = None,
        sale_id: str | None = None,
    ) -> MutationResult:
        warning = self._save(aggregates, audits)
        return self._result(aggregates[0], warning=warning, routing=routing, sale_id=sale_id)

    def _result(
        self,
        aggregate: TableAggregate,
        warning: str | None = None,
        routing: RoutingResult | None = None,
        sale_id: str | None = None,
    ) -> MutationResult:
        order = aggregate.order
        return MutationResult(
            table_id=aggregate.table_id,
            state=aggregate.state,
            order=order.to_output() if order is not None else None,
            revision=order.revision if order is not None else None,
            degraded=warning is not None,
            warning=warning,
            routing=routing,
            sale_id=sale_id,
        )

    def _notify(self, result: MutationResult, origin: str | None, cleared: bool = False) -> None:
        if result.revision is not None:
            self._notifier.notify_revision(result.table_id, result.revision, result.state, origin)
        elif cleared:
            self._notifier.notify_cleared(result.table_id, result.state, origin)
        else:
            self._notifier.notify_state(result.table_id, result.state, origin)

    def _dispatch(self, result: MutationResult, routing: RoutingResult) -> None:
        """Hand tickets to the dispatcher. The lines stay sent if it fails."""
        if self._dispatcher is None or not routing.tickets:
            return
        try:
            self._dispatcher.dispatch(routing)
        except Exception as e:
            # Printing is external; the order is already committed
            logger.error(
                "Ticket dispatch failed",
                table_id=result.table_id,
                printers=list(routing.tickets),
                error=str(e),
                exc_info=True,
            )
            message = "Los tickets no pudieron enviarse a las comanderas"
            result.warning = f"{result.warning}; {message}" if result.warning else message
