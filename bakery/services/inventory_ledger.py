"""
Inventory Ledger for per-branch stock.

Prevents overselling by holding stock in ``reserved_quantity`` while an
order moves through checkout:
1. reserve()  - called for each cart line when an order is placed
2. consume()  - called when the order is fulfilled (stock leaves the shelf)
3. release()  - called when the order is cancelled, expires, or checkout
                fails part way through

The check-and-increment in reserve() is a single conditional UPDATE, so
concurrent checkouts against the same row are serialised by the database
and can never grant more than ``stock_quantity``.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from bakery.core.errors import ValidationError
from bakery.models.branch import Branch
from bakery.models.inventory import BranchInventory


logger = logging.getLogger(__name__)


class StockStatus(str, Enum):
    AVAILABLE = "available"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    UNAVAILABLE = "unavailable"


class ReservationStatus(str, Enum):
    OK = "OK"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    NOT_AVAILABLE = "NOT_AVAILABLE"


class CartAvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    INSUFFICIENT_STOCK = "insufficient_stock"
    UNAVAILABLE = "unavailable"


@dataclass
class StockLine:
    """A (product, variant, quantity) triple to check or reserve."""
    product_id: uuid.UUID
    quantity: int
    variant_id: Optional[uuid.UUID] = None

    @property
    def sort_key(self) -> Tuple[str, str]:
        return (str(self.product_id), str(self.variant_id or ""))


@dataclass
class StockAvailability:
    status: StockStatus
    available_quantity: int = 0
    stock_quantity: int = 0
    reserved_quantity: int = 0
    min_stock_level: int = 0
    price_override: Optional[Decimal] = None

    @property
    def is_sellable(self) -> bool:
        return self.status != StockStatus.UNAVAILABLE


@dataclass
class LineAvailability:
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    requested: int
    availability: StockAvailability

    @property
    def satisfied(self) -> bool:
        return (
            self.availability.is_sellable
            and self.availability.available_quantity >= self.requested
        )


@dataclass
class CartAvailability:
    branch_id: uuid.UUID
    status: CartAvailabilityStatus
    lines: List[LineAvailability] = field(default_factory=list)

    @property
    def is_available(self) -> bool:
        return self.status == CartAvailabilityStatus.AVAILABLE


@dataclass
class ReservationResult:
    """Result of a reservation attempt."""
    status: ReservationStatus
    branch_id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    requested: int
    available: int = 0

    @property
    def success(self) -> bool:
        return self.status == ReservationStatus.OK


class InventoryLedger:
    """
    Reads and writes ``branch_inventory``.

    Mutating methods commit by default so each reservation is durable and
    visible to concurrent checkouts as soon as it is granted. Pass
    ``commit=False`` to fold the change into the caller's transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    def _row_filter(self, branch_id: uuid.UUID, product_id: uuid.UUID, variant_id: Optional[uuid.UUID]):
        conditions = [
            BranchInventory.branch_id == branch_id,
            BranchInventory.product_id == product_id,
        ]
        if variant_id is None:
            conditions.append(BranchInventory.variant_id.is_(None))
        else:
            conditions.append(BranchInventory.variant_id == variant_id)
        return conditions

    async def _get_row(
        self,
        branch_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: Optional[uuid.UUID] = None,
    ) -> Tuple[Optional[BranchInventory], bool]:
        """Return (inventory row or None, branch is active)."""
        result = await self.db.execute(
            select(BranchInventory, Branch.is_active)
            .join(Branch, Branch.id == BranchInventory.branch_id)
            .where(*self._row_filter(branch_id, product_id, variant_id))
            .order_by(BranchInventory.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if row is None:
            return None, False
        return row[0], bool(row[1])

    @staticmethod
    def _status_for(row: Optional[BranchInventory], branch_active: bool) -> StockAvailability:
        if row is None or not branch_active or not row.is_available:
            return StockAvailability(status=StockStatus.UNAVAILABLE)

        available = row.available_quantity
        if available <= 0:
            status = StockStatus.OUT_OF_STOCK
        elif row.is_low_stock:
            status = StockStatus.LOW_STOCK
        else:
            status = StockStatus.AVAILABLE

        return StockAvailability(
            status=status,
            available_quantity=max(available, 0),
            stock_quantity=row.stock_quantity,
            reserved_quantity=row.reserved_quantity,
            min_stock_level=row.min_stock_level,
            price_override=row.price_override,
        )

    async def check_availability(
        self,
        branch_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: Optional[uuid.UUID] = None,
    ) -> StockAvailability:
        row, branch_active = await self._get_row(branch_id, product_id, variant_id)
        return self._status_for(row, branch_active)

    async def check_cart(self, branch_id: uuid.UUID, lines: Iterable[StockLine]) -> CartAvailability:
        """Read-only check of every line against one branch."""
        checked: List[LineAvailability] = []
        for line in lines:
            availability = await self.check_availability(branch_id, line.product_id, line.variant_id)
            checked.append(
                LineAvailability(
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    requested=line.quantity,
                    availability=availability,
                )
            )

        if any(not c.availability.is_sellable for c in checked):
            status = CartAvailabilityStatus.UNAVAILABLE
        elif all(c.satisfied for c in checked):
            status = CartAvailabilityStatus.AVAILABLE
        else:
            status = CartAvailabilityStatus.INSUFFICIENT_STOCK

        return CartAvailability(branch_id=branch_id, status=status, lines=checked)

    # ==================== RESERVATIONS ====================

    async def reserve(
        self,
        branch_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: Optional[uuid.UUID],
        quantity: int,
        commit: bool = True,
    ) -> ReservationResult:
        """
        Hold ``quantity`` units for an order.

        Never creates a row. A missing row, an inactive branch or an
        unavailable row reports NOT_AVAILABLE; an existing row without
        enough free stock reports INSUFFICIENT_STOCK with what is left.
        """
        if quantity <= 0:
            raise ValueError(f"Reservation quantity must be positive, got {quantity}")

        row, branch_active = await self._get_row(branch_id, product_id, variant_id)
        if row is None or not branch_active or not row.is_available:
            return ReservationResult(
                status=ReservationStatus.NOT_AVAILABLE,
                branch_id=branch_id,
                product_id=product_id,
                variant_id=variant_id,
                requested=quantity,
            )

        active_branch = select(Branch.id).where(Branch.id == branch_id, Branch.is_active.is_(True))
        result = await self.db.execute(
            update(BranchInventory)
            .where(
                BranchInventory.id == row.id,
                BranchInventory.is_available.is_(True),
                BranchInventory.stock_quantity - BranchInventory.reserved_quantity >= quantity,
                BranchInventory.branch_id.in_(active_branch),
            )
            .values(
                reserved_quantity=BranchInventory.reserved_quantity + quantity,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            if commit:
                await self.db.commit()
            logger.debug(f"Reserved {quantity} of {product_id} at branch {branch_id}")
            return ReservationResult(
                status=ReservationStatus.OK,
                branch_id=branch_id,
                product_id=product_id,
                variant_id=variant_id,
                requested=quantity,
                available=row.stock_quantity - row.reserved_quantity - quantity,
            )

        # Lost the race or never had enough; re-read to report what is left
        current, branch_active = await self._get_row(branch_id, product_id, variant_id)
        if commit:
            await self.db.rollback()

        if current is None or not branch_active or not current.is_available:
            status = ReservationStatus.NOT_AVAILABLE
            available = 0
        else:
            status = ReservationStatus.INSUFFICIENT_STOCK
            available = max(current.stock_quantity - current.reserved_quantity, 0)

        logger.info(
            f"Reservation refused for {product_id} at branch {branch_id}: "
            f"{status.value} (requested {quantity}, available {available})"
        )
        return ReservationResult(
            status=status,
            branch_id=branch_id,
            product_id=product_id,
            variant_id=variant_id,
            requested=quantity,
            available=available,
        )

    async def release(
        self,
        branch_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: Optional[uuid.UUID],
        quantity: int,
        commit: bool = True,
    ) -> int:
        """
        Give back a reservation. Always succeeds; ``reserved_quantity`` is
        clamped at zero. Returns the quantity actually released.
        """
        if quantity <= 0:
            return 0

        row, _ = await self._get_row(branch_id, product_id, variant_id)
        if row is None:
            logger.warning(
                f"Release of {quantity} for {product_id} at branch {branch_id} found no inventory row"
            )
            return 0

        released = min(quantity, row.reserved_quantity)
        await self.db.execute(
            update(BranchInventory)
            .where(BranchInventory.id == row.id)
            .values(
                reserved_quantity=case(
                    (BranchInventory.reserved_quantity >= quantity,
                     BranchInventory.reserved_quantity - quantity),
                    else_=0,
                ),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if commit:
            await self.db.commit()

        if released < quantity:
            logger.warning(
                f"Release of {quantity} for {product_id} at branch {branch_id} "
                f"clamped to {released}"
            )
        return released

    async def release_lines(self, branch_id: uuid.UUID, lines: Iterable[StockLine], commit: bool = True) -> int:
        released = 0
        for line in lines:
            released += await self.release(
                branch_id, line.product_id, line.variant_id, line.quantity, commit=False
            )
        if commit:
            await self.db.commit()
        return released

    async def consume(
        self,
        branch_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: Optional[uuid.UUID],
        quantity: int,
        commit: bool = True,
    ) -> bool:
        """Turn a reservation into a stock decrement when goods leave the branch."""
        result = await self.db.execute(
            update(BranchInventory)
            .where(
                *self._row_filter(branch_id, product_id, variant_id),
                BranchInventory.reserved_quantity >= quantity,
                BranchInventory.stock_quantity >= quantity,
            )
            .values(
                stock_quantity=BranchInventory.stock_quantity - quantity,
                reserved_quantity=BranchInventory.reserved_quantity - quantity,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if commit:
            await self.db.commit()

        if result.rowcount == 0:
            logger.error(
                f"Consume of {quantity} for {product_id} at branch {branch_id} "
                f"found no matching reservation"
            )
            return False
        return True

    # ==================== ADMINISTRATION ====================

    async def set_stock(
        self,
        branch_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: Optional[uuid.UUID],
        stock_quantity: int,
        min_stock_level: Optional[int] = None,
        price_override: Optional[Decimal] = None,
        is_available: Optional[bool] = None,
    ) -> BranchInventory:
        """
        Restock or create an inventory row.

        Refuses to set stock below what is currently reserved.
        """
        if stock_quantity < 0:
            raise ValidationError("Stock quantity cannot be negative")

        row, _ = await self._get_row(branch_id, product_id, variant_id)
        if row is None:
            row = BranchInventory(
                branch_id=branch_id,
                product_id=product_id,
                variant_id=variant_id,
                stock_quantity=stock_quantity,
                reserved_quantity=0,
                min_stock_level=min_stock_level or 0,
                price_override=price_override,
                is_available=True if is_available is None else is_available,
            )
            self.db.add(row)
            await self.db.commit()
            logger.info(f"Created inventory for {product_id} at branch {branch_id}: {stock_quantity}")
            return row

        values = {
            "stock_quantity": stock_quantity,
            "updated_at": datetime.now(timezone.utc),
        }
        if min_stock_level is not None:
            values["min_stock_level"] = min_stock_level
        if price_override is not None:
            values["price_override"] = price_override
        if is_available is not None:
            values["is_available"] = is_available

        result = await self.db.execute(
            update(BranchInventory)
            .where(
                BranchInventory.id == row.id,
                BranchInventory.reserved_quantity <= stock_quantity,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            current, _ = await self._get_row(branch_id, product_id, variant_id)
            raise ValidationError(
                "Stock quantity cannot be lower than the reserved quantity",
                details={
                    "requested_stock": stock_quantity,
                    "reserved_quantity": current.reserved_quantity if current else 0,
                },
            )

        await self.db.commit()
        logger.info(f"Restocked {product_id} at branch {branch_id}: {stock_quantity}")
        refreshed, _ = await self._get_row(branch_id, product_id, variant_id)
        return refreshed
