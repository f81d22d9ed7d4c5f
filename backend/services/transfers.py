"""
Transfer coordinator: move a quantity of one item between two warehouses.

The debit and the credit run in one database transaction. The debit is a
conditional UPDATE, so the availability check and the decrement cannot be
separated by another writer; if anything fails before commit the whole
transaction rolls back and no stock vanishes or is double counted.

Storage contention (SQLite "database is locked", PostgreSQL serialization
failures, deadlocks and lock timeouts) is retried with exponential backoff.
Domain errors are raised to the caller as-is and never retried.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import Conflict, InsufficientStock, InvalidArgument, InventoryError, TransientStorageError
from db.inventory.stock import item_key
from db.inventory.transfer import TransferReceipt
from db.warehouse import warehouse_key
from schemas.logs import AuditEntryCreate
from services import ledger
from services.aggregation import AggregationView, aggregation_view
from services.audit import AuditLog, audit_log

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}
# SQLite reports lock contention only through the message
_SQLITE_BUSY_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def is_transient(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _TRANSIENT_SQLSTATES:
        return True
    if isinstance(exc, OperationalError):
        message = str(orig if orig is not None else exc).lower()
        return any(busy in message for busy in _SQLITE_BUSY_MESSAGES)
    return False


@dataclass
class TransferResult:
    item_name: str
    from_warehouse: str
    to_warehouse: str
    quantity: int
    new_source_quantity: int
    new_dest_quantity: int
    replayed: bool = False
    source_record_id: Optional[UUID] = None

    def to_dict(self) -> dict:
        out = asdict(self)
        out.pop("source_record_id")
        return out


class TransferCoordinator:
    def __init__(
        self,
        aggregation: AggregationView,
        audit: AuditLog,
        max_retries: int = 3,
        backoff_seconds: float = 0.05,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.aggregation = aggregation
        self.audit = audit
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def transfer(
        self,
        db: AsyncSession,
        item_name: str,
        from_warehouse: str,
        to_warehouse: str,
        quantity: int,
        *,
        user_id: Optional[UUID] = None,
        idempotency_key: Optional[str] = None,
    ) -> TransferResult:
        qty = int(quantity)
        if qty <= 0:
            raise InvalidArgument("quantity must be > 0")
        if warehouse_key(from_warehouse) == warehouse_key(to_warehouse):
            raise InvalidArgument("fromWarehouse and toWarehouse must be different")
        if not item_key(item_name):
            raise InvalidArgument("item name is required")

        attempt = 0
        while True:
            try:
                result = await self._attempt(
                    db, item_name, from_warehouse, to_warehouse, qty, user_id, idempotency_key
                )
                break
            except InsufficientStock:
                await db.rollback()
                # The stock may have gone to a concurrent request with the same key
                if idempotency_key:
                    replay = await self._replay(db, idempotency_key, item_name, from_warehouse, to_warehouse, qty)
                    if replay is not None:
                        return replay
                raise
            except InventoryError:
                await db.rollback()
                raise
            except IntegrityError as exc:
                await db.rollback()
                # A concurrent request with the same key committed first
                if idempotency_key:
                    replay = await self._replay(db, idempotency_key, item_name, from_warehouse, to_warehouse, qty)
                    if replay is not None:
                        return replay
                logger.warning(
                    "Transfer of %s x '%s' %s->%s hit a constraint: %s",
                    qty, item_name, from_warehouse, to_warehouse, exc.orig,
                )
                # A warehouse deleted mid-transfer surfaces as a foreign key failure
                await ledger.get_warehouse(db, from_warehouse)
                await ledger.get_warehouse(db, to_warehouse)
                raise Conflict(
                    "Transfer conflicted with a concurrent change; re-check stock before retrying"
                ) from exc
            except DBAPIError as exc:
                await db.rollback()
                if not is_transient(exc):
                    raise
                attempt += 1
                if attempt > self.max_retries:
                    logger.warning(
                        "Transfer of %s x '%s' %s->%s gave up after %s attempts: %s",
                        qty, item_name, from_warehouse, to_warehouse, attempt, exc.orig,
                    )
                    raise TransientStorageError(
                        "Transfer could not be completed because the stock store is busy; re-check stock before retrying"
                    ) from exc
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.info("Transfer contention on '%s' (attempt %s), retrying in %.3fs", item_name, attempt, delay)
                await self._sleep(delay)

        if result.replayed:
            return result

        self.aggregation.invalidate()
        logger.info(
            "Transferred %s x '%s' from '%s' to '%s' (source=%s dest=%s)",
            result.quantity, result.item_name, result.from_warehouse, result.to_warehouse,
            result.new_source_quantity, result.new_dest_quantity,
        )
        await self.audit.append(
            AuditEntryCreate(
                action_type="transfer",
                item_id=result.source_record_id,
                item_name=result.item_name,
                quantity=result.quantity,
                from_warehouse=result.from_warehouse,
                to_warehouse=result.to_warehouse,
                user_id=user_id,
            )
        )
        return result

    async def _attempt(
        self,
        db: AsyncSession,
        item_name: str,
        from_warehouse: str,
        to_warehouse: str,
        qty: int,
        user_id: Optional[UUID],
        idempotency_key: Optional[str],
    ) -> TransferResult:
        if idempotency_key:
            replay = await self._replay(db, idempotency_key, item_name, from_warehouse, to_warehouse, qty)
            if replay is not None:
                return replay

        src_wh = await ledger.get_warehouse(db, from_warehouse)
        dst_wh = await ledger.get_warehouse(db, to_warehouse)
        source = await ledger.get(db, item_name, src_wh.name)

        if int(source.quantity) < qty:
            raise InsufficientStock(
                f"Not enough quantity in {src_wh.name}. Available={int(source.quantity)} requested={qty}",
                available=int(source.quantity),
                requested=qty,
            )

        debited = await ledger.try_debit(db, source, qty)
        if debited is None:
            current = await ledger.get_by_id(db, source.id)
            raise InsufficientStock(
                f"Not enough quantity in {src_wh.name}. Available={int(current.quantity)} requested={qty}",
                available=int(current.quantity),
                requested=qty,
            )

        credited = await ledger.upsert_delta(db, debited.name, dst_wh.name, qty, int(debited.low_stock_threshold))

        result = TransferResult(
            item_name=debited.name,
            from_warehouse=src_wh.name,
            to_warehouse=dst_wh.name,
            quantity=qty,
            new_source_quantity=int(debited.quantity),
            new_dest_quantity=int(credited.quantity),
            source_record_id=debited.id,
        )
        if idempotency_key:
            db.add(
                TransferReceipt(
                    idempotency_key=idempotency_key,
                    item_name=result.item_name,
                    from_warehouse=result.from_warehouse,
                    to_warehouse=result.to_warehouse,
                    quantity=qty,
                    new_source_quantity=result.new_source_quantity,
                    new_dest_quantity=result.new_dest_quantity,
                    created_by_user_id=user_id,
                )
            )
            await db.flush()

        await db.commit()
        return result

    async def _replay(
        self,
        db: AsyncSession,
        idempotency_key: str,
        item_name: str,
        from_warehouse: str,
        to_warehouse: str,
        qty: int,
    ) -> Optional[TransferResult]:
        res = await db.execute(select(TransferReceipt).where(TransferReceipt.idempotency_key == idempotency_key))
        receipt = res.scalar_one_or_none()
        if receipt is None:
            return None

        same_request = (
            item_key(receipt.item_name) == item_key(item_name)
            and warehouse_key(receipt.from_warehouse) == warehouse_key(from_warehouse)
            and warehouse_key(receipt.to_warehouse) == warehouse_key(to_warehouse)
            and int(receipt.quantity) == qty
        )
        if not same_request:
            raise Conflict("idempotencyKey was already used for a different transfer")

        logger.info("Replaying transfer for idempotency key %s", idempotency_key)
        return TransferResult(
            item_name=receipt.item_name,
            from_warehouse=receipt.from_warehouse,
            to_warehouse=receipt.to_warehouse,
            quantity=int(receipt.quantity),
            new_source_quantity=int(receipt.new_source_quantity),
            new_dest_quantity=int(receipt.new_dest_quantity),
            replayed=True,
        )


transfer_coordinator = TransferCoordinator(
    aggregation_view,
    audit_log,
    max_retries=settings.transfer_max_retries,
    backoff_seconds=settings.transfer_retry_backoff_seconds,
)


def get_transfer_coordinator() -> TransferCoordinator:
    return transfer_coordinator
