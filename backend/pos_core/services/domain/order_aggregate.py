"""
Table aggregate: a table plus its optional active order.

Table state and the active order are one unit; the store never touches one
without the other. These are plain in-memory objects, mutated only by the
store while it holds the table lock.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable

from pos_shared.config.constants import (
    ORDER_STATES,
    TABLE_STATE_COLORS,
    TABLE_STATE_LABELS,
    PrinterCategory,
    TableShape,
    TableState,
)
from pos_core.models import Table
from pos_core.schemas import (
    ActiveOrderOutput,
    LineItemOutput,
    OrderSnapshot,
    ProductInfo,
    TableOutput,
)


@dataclass
class LineItem:
    line_id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    category: PrinterCategory
    added_at: datetime
    notes: str | None = None
    sent: bool = False
    printer_id: int | None = None

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def merge_key(self) -> tuple:
        """Lines with equal keys are folded together on transfer."""
        return (self.product_id, self.unit_price_cents, self.notes, self.sent)

    def to_output(self) -> LineItemOutput:
        return LineItemOutput(
            line_id=self.line_id,
            product_id=self.product_id,
            product_name=self.product_name,
            quantity=self.quantity,
            unit_price_cents=self.unit_price_cents,
            category=self.category,
            notes=self.notes,
            sent=self.sent,
            printer_id=self.printer_id,
            added_at=self.added_at,
        )

    @classmethod
    def from_output(cls, data: LineItemOutput) -> LineItem:
        return cls(
            line_id=data.line_id,
            product_id=data.product_id,
            product_name=data.product_name,
            quantity=data.quantity,
            unit_price_cents=data.unit_price_cents,
            category=data.category,
            added_at=data.added_at,
            notes=data.notes,
            sent=data.sent,
            printer_id=data.printer_id,
        )


@dataclass
class ActiveOrder:
    order_id: str
    table_id: int
    created_at: datetime
    updated_at: datetime
    revision: int = 0
    items: list[LineItem] = field(default_factory=list)
    origin: str | None = None
    waiter: str | None = None
    # In-memory only: a finalize call is awaiting the collaborator
    finalizing: bool = False

    @classmethod
    def open(
        cls,
        table_id: int,
        now: datetime,
        origin: str | None = None,
        waiter: str | None = None,
    ) -> ActiveOrder:
        return cls(
            order_id=uuid.uuid4().hex,
            table_id=table_id,
            created_at=now,
            updated_at=now,
            origin=origin,
            waiter=waiter,
        )

    @property
    def subtotal_cents(self) -> int:
        return sum(line.total_cents for line in self.items)

    def next_line_id(self) -> int:
        return max((line.line_id for line in self.items), default=0) + 1

    def get_line(self, line_id: int) -> LineItem | None:
        for line in self.items:
            if line.line_id == line_id:
                return line
        return None

    def unsent_lines(self) -> list[LineItem]:
        return [line for line in self.items if not line.sent]

    def find_mergeable(self, product_id: int, notes: str | None) -> LineItem | None:
        """Unsent line of the same product with the same notes."""
        for line in self.items:
            if not line.sent and line.product_id == product_id and line.notes == notes:
                return line
        return None

    def add_product(
        self,
        product: ProductInfo,
        quantity: int,
        notes: str | None,
        now: datetime,
    ) -> LineItem:
        """
        Merge into a mergeable line or append a new one.

        A merged line keeps its original price snapshot.
        """
        line = self.find_mergeable(product.product_id, notes)
        if line is not None:
            line.quantity += quantity
            return line
        line = LineItem(
            line_id=self.next_line_id(),
            product_id=product.product_id,
            product_name=product.name,
            quantity=quantity,
            unit_price_cents=product.unit_price_cents,
            category=product.category,
            added_at=now,
            notes=notes,
        )
        self.items.append(line)
        return line

    def remove_line(self, line_id: int) -> None:
        self.items = [line for line in self.items if line.line_id != line_id]

    def detach_lines(self, line_ids: Iterable[int]) -> list[LineItem]:
        """Remove and return the given lines, keeping their order."""
        wanted = set(line_ids)
        moved = [line for line in self.items if line.line_id in wanted]
        self.items = [line for line in self.items if line.line_id not in wanted]
        return moved

    def absorb_exceeds(self, lines: Iterable[LineItem], max_quantity: int) -> bool:
        """True if absorbing ``lines`` would push a folded line past ``max_quantity``."""
        totals: dict[tuple, int] = {}
        for line in self.items:
            # absorb() folds into the first line with a matching key
            totals.setdefault(line.merge_key(), line.quantity)
        for line in lines:
            key = line.merge_key()
            totals[key] = totals.get(key, 0) + line.quantity
        return any(quantity > max_quantity for quantity in totals.values())

    def absorb(self, lines: Iterable[LineItem]) -> None:
        """Append lines coming from another order, folding equal ones."""
        for incoming in lines:
            existing = next(
                (line for line in self.items if line.merge_key() == incoming.merge_key()),
                None,
            )
            if existing is not None:
                existing.quantity += incoming.quantity
            else:
                self.items.append(replace(incoming, line_id=self.next_line_id()))

    def touch(self, now: datetime, origin: str | None = None) -> None:
        """Record a mutation: bump the revision."""
        self.revision += 1
        self.updated_at = now
        if origin is not None:
            self.origin = origin

    def to_output(self) -> ActiveOrderOutput:
        return ActiveOrderOutput(
            order_id=self.order_id,
            table_id=self.table_id,
            items=[line.to_output() for line in self.items],
            subtotal_cents=self.subtotal_cents,
            revision=self.revision,
            origin=self.origin,
            waiter=self.waiter,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_snapshot(self) -> OrderSnapshot:
        return OrderSnapshot(
            table_id=self.table_id,
            order_id=self.order_id,
            revision=self.revision,
            line_items=[line.to_output() for line in self.items],
            subtotal_cents=self.subtotal_cents,
            created_at=self.created_at,
            updated_at=self.updated_at,
            origin=self.origin,
            waiter=self.waiter,
        )

    @classmethod
    def from_snapshot(cls, snapshot: OrderSnapshot) -> ActiveOrder:
        return cls(
            order_id=snapshot.order_id,
            table_id=snapshot.table_id,
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
            revision=snapshot.revision,
            items=[LineItem.from_output(line) for line in snapshot.line_items],
            origin=snapshot.origin,
            waiter=snapshot.waiter,
        )


@dataclass
class TableAggregate:
    table_id: int
    number: int
    state: TableState = TableState.LIBRE
    capacity: int = 4
    shape: TableShape = TableShape.SQUARE
    pos_x: float = 0.0
    pos_y: float = 0.0
    size: float = 1.0
    sector_id: int | None = None
    is_active: bool = True
    order: ActiveOrder | None = None

    @classmethod
    def from_model(
        cls,
        table: Table,
        state: TableState | None = None,
        order: ActiveOrder | None = None,
    ) -> TableAggregate:
        aggregate = cls(table_id=table.id, number=table.number)
        aggregate.apply_model(table)
        aggregate.state = state if state is not None else TableState(table.status)
        aggregate.order = order
        return aggregate

    def apply_model(self, table: Table) -> None:
        """Copy the CRUD-owned columns; state and order are left alone."""
        self.number = table.number
        self.capacity = table.capacity
        self.shape = TableShape(table.shape)
        self.pos_x = table.pos_x
        self.pos_y = table.pos_y
        self.size = table.size
        self.sector_id = table.sector_id
        self.is_active = table.is_active

    @property
    def has_active_order(self) -> bool:
        return self.order is not None

    def is_consistent(self) -> bool:
        """Occupied-family state if and only if an order exists."""
        return (self.state in ORDER_STATES) == (self.order is not None)

    def to_output(self) -> TableOutput:
        return TableOutput(
            id=self.table_id,
            number=self.number,
            capacity=self.capacity,
            shape=self.shape,
            pos_x=self.pos_x,
            pos_y=self.pos_y,
            size=self.size,
            sector_id=self.sector_id,
            is_active=self.is_active,
            state=self.state,
            state_label=TABLE_STATE_LABELS[self.state],
            state_color=TABLE_STATE_COLORS[self.state],
            has_active_order=self.has_active_order,
        )
