"""
Resource wallet and seat-transaction ledger.

Each balance change runs in one database transaction that locks the
wallet row (``SELECT ... FOR UPDATE`` where the store supports it),
re-checks the balance under that lock, updates it and appends exactly one
``seat_transaction`` row per resource touched. The wallet also carries a
version counter (SQLAlchemy ``version_id_col``): on stores without row
locks a concurrent writer fails its UPDATE with ``StaleDataError`` and the
whole cycle is retried on a fresh session, up to ``max_retries`` times.
"""
from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

from sqlalchemy import asc, desc, func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from saga.models import ResourceType, ResourceWallet, SeatTransaction, TransactionType
from saga.schemas import WalletBalance, serialize_transaction
from saga.services.errors import (
    ConstraintViolationError,
    InsufficientResourceError,
    TransientStoreError,
    ValidationError,
    WalletNotFoundError,
)
from saga.settings.config import settings

logger = logging.getLogger(__name__)

RESOURCE_COLUMNS = {
    ResourceType.project_voucher.value: "project_vouchers",
    ResourceType.facilitator_seat.value: "facilitator_seats",
    ResourceType.storyteller_seat.value: "storyteller_seats",
}
CREDIT_TYPES = (TransactionType.purchase.value, TransactionType.refund.value, TransactionType.grant.value)
HISTORY_SORT_COLUMNS = {"created_at": SeatTransaction.created_at, "amount": SeatTransaction.amount}
SUMMARY_PERIODS = ("day", "week", "month")


# ---------------------------
# Validation primitives
# ---------------------------
def validate_resource_type(resource_type: Any) -> bool:
    return isinstance(resource_type, str) and resource_type in RESOURCE_COLUMNS


def validate_transaction_type(transaction_type: Any) -> bool:
    return isinstance(transaction_type, str) and transaction_type in {t.value for t in TransactionType}


def validate_amount(amount: Any) -> bool:
    """Positive whole number; 0, negatives, fractions, NaN and bools are rejected."""
    if isinstance(amount, bool):
        return False
    if isinstance(amount, int):
        return amount > 0
    if isinstance(amount, float):
        return math.isfinite(amount) and amount.is_integer() and amount > 0
    return False


def _require_resource_type(resource_type: Any) -> str:
    if isinstance(resource_type, ResourceType):
        resource_type = resource_type.value
    if not validate_resource_type(resource_type):
        raise ValidationError(f"Invalid resource type: {resource_type!r}")
    return resource_type


def _require_transaction_type(transaction_type: Any) -> str:
    if isinstance(transaction_type, TransactionType):
        transaction_type = transaction_type.value
    if not validate_transaction_type(transaction_type):
        raise ValidationError(f"Invalid transaction type: {transaction_type!r}")
    return transaction_type


def _require_amount(amount: Any) -> int:
    """Normalize a signed delta or a positive request to a positive int."""
    if isinstance(amount, (int, float)) and not isinstance(amount, bool) and not math.isnan(amount):
        amount = abs(amount)
    if not validate_amount(amount):
        raise ValidationError(f"Invalid amount: {amount!r}")
    return int(amount)


def balance_of(wallet: ResourceWallet, resource_type: str) -> int:
    return int(getattr(wallet, RESOURCE_COLUMNS[resource_type]) or 0)


# ---------------------------
# Event handlers
# ---------------------------
class LedgerEventHandler(Protocol):
    async def on_transaction(self, transaction: SeatTransaction) -> None: ...


class LoggingLedgerHandler:
    """Default handler: one INFO line per committed ledger row."""

    async def on_transaction(self, transaction: SeatTransaction) -> None:
        logger.info(
            "Ledger %s: user=%s %s %+d project=%s tx=%s",
            transaction.transaction_type,
            transaction.user_id,
            transaction.resource_type,
            transaction.amount,
            transaction.project_id,
            transaction.id,
        )


# ---------------------------
# Ledger
# ---------------------------
class ResourceLedger:
    def __init__(
        self,
        session_maker,
        handlers: Optional[Sequence[LedgerEventHandler]] = None,
        *,
        max_retries: Optional[int] = None,
        max_balance: Optional[int] = None,
        prices: Optional[dict[str, float]] = None,
    ):
        self.session_maker = session_maker
        self.handlers = list(handlers) if handlers is not None else [LoggingLedgerHandler()]
        self.max_retries = max(1, max_retries or settings.LEDGER_MAX_RETRIES)
        self.max_balance = max_balance or settings.LEDGER_MAX_BALANCE
        self.prices = prices or {
            ResourceType.project_voucher.value: settings.VOUCHER_VALUE,
            ResourceType.facilitator_seat.value: settings.FACILITATOR_SEAT_VALUE,
            ResourceType.storyteller_seat.value: settings.STORYTELLER_SEAT_VALUE,
        }

    # ------------------------------------------------------------------
    # atomic core
    # ------------------------------------------------------------------
    @staticmethod
    async def _lock_wallet(db: AsyncSession, user_id: int) -> Optional[ResourceWallet]:
        stmt = select(ResourceWallet).where(ResourceWallet.user_id == user_id).with_for_update()
        return (await db.execute(stmt)).scalars().first()

    async def _wallet_was_raced(self, user_id: int) -> bool:
        """After a failed insert: did another writer create the wallet meanwhile?"""
        try:
            return await self.get_wallet(user_id) is not None
        except (OperationalError, StaleDataError):
            # store busy; let the retry loop decide
            return True

    async def _atomic(
        self,
        user_id: int,
        mutate: Callable[[ResourceWallet], list[SeatTransaction]],
        *,
        create_missing: bool,
    ) -> tuple[ResourceWallet, list[SeatTransaction]]:
        """
        Lock (or create) the wallet, apply ``mutate`` and persist the ledger
        rows it returns, all in one transaction. Domain errors raised by
        ``mutate`` roll back and propagate untouched.
        """
        last_exc: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            inserting = False
            try:
                async with self.session_maker() as db:
                    async with db.begin():
                        wallet = await self._lock_wallet(db, user_id)
                        if wallet is None:
                            if not create_missing:
                                raise WalletNotFoundError(user_id)
                            inserting = True
                            wallet = ResourceWallet(
                                user_id=user_id,
                                project_vouchers=0,
                                facilitator_seats=0,
                                storyteller_seats=0,
                            )
                            db.add(wallet)
                            await db.flush()
                        entries = mutate(wallet)
                        db.add_all(entries)
                        await db.flush()
            except IntegrityError as exc:
                # only a concurrent insert of the same wallet is worth retrying
                if inserting and await self._wallet_was_raced(user_id):
                    last_exc = exc
                    logger.debug("Wallet insert for user %s raced (attempt %d/%d)", user_id, attempt, self.max_retries)
                    continue
                logger.warning("Ledger write for user %s violated a constraint: %s", user_id, exc.orig)
                raise ConstraintViolationError(
                    f"Ledger write for user {user_id} rejected: unknown user or project"
                ) from exc
            except (StaleDataError, OperationalError) as exc:
                # lost an optimistic race or timed out waiting for a lock
                last_exc = exc
                logger.debug("Ledger write for user %s conflicted (attempt %d/%d): %s",
                             user_id, attempt, self.max_retries, exc)
                await asyncio.sleep(0.005 * attempt)
                continue
            except SQLAlchemyError as exc:
                logger.exception("Ledger write for user %s failed", user_id)
                raise TransientStoreError("Ledger store unavailable") from exc

            await self._dispatch(entries)
            return wallet, entries

        logger.warning("Ledger write for user %s gave up after %d attempts", user_id, self.max_retries)
        raise TransientStoreError(
            f"Could not update wallet for user {user_id} after {self.max_retries} attempts"
        ) from last_exc

    async def _dispatch(self, entries: Iterable[SeatTransaction]) -> None:
        for entry in entries:
            for handler in self.handlers:
                try:
                    await handler.on_transaction(entry)
                except Exception:  # noqa: BLE001
                    logger.exception("Ledger handler %r failed for transaction %s", handler, entry.id)

    def _debit(
        self,
        user_id: int,
        resource_type: str,
        amount: int,
        transaction_type: str,
        project_id: Optional[int],
        description: Optional[str],
        metadata: Optional[dict],
    ) -> Callable[[ResourceWallet], list[SeatTransaction]]:
        def mutate(wallet: ResourceWallet) -> list[SeatTransaction]:
            available = balance_of(wallet, resource_type)
            if available < amount:
                raise InsufficientResourceError(resource_type, amount, available)
            setattr(wallet, RESOURCE_COLUMNS[resource_type], available - amount)
            return [
                SeatTransaction(
                    user_id=user_id,
                    transaction_type=transaction_type,
                    resource_type=resource_type,
                    amount=-amount,
                    project_id=project_id,
                    description=description,
                    meta=metadata,
                )
            ]

        return mutate

    def _credit(
        self,
        user_id: int,
        amounts: dict[str, int],
        transaction_type: str,
        project_id: Optional[int],
        description: Optional[str],
        metadata: Optional[dict],
    ) -> Callable[[ResourceWallet], list[SeatTransaction]]:
        def mutate(wallet: ResourceWallet) -> list[SeatTransaction]:
            entries = []
            for resource_type, amount in amounts.items():
                new_balance = balance_of(wallet, resource_type) + amount
                if new_balance > self.max_balance:
                    raise ValidationError(
                        f"Resource limit exceeded for {resource_type}: {new_balance} > {self.max_balance}"
                    )
                setattr(wallet, RESOURCE_COLUMNS[resource_type], new_balance)
                entries.append(
                    SeatTransaction(
                        user_id=user_id,
                        transaction_type=transaction_type,
                        resource_type=resource_type,
                        amount=amount,
                        project_id=project_id,
                        description=description or f"Added {amount} {resource_type}",
                        meta=metadata,
                    )
                )
            return entries

        return mutate

    # ------------------------------------------------------------------
    # wallet lifecycle / reads
    # ------------------------------------------------------------------
    async def create_wallet(
        self,
        user_id: int,
        project_vouchers: int = 0,
        facilitator_seats: int = 0,
        storyteller_seats: int = 0,
    ) -> ResourceWallet:
        """Create a wallet; opening balances are written as ``grant`` rows."""
        opening = {
            ResourceType.project_voucher.value: project_vouchers,
            ResourceType.facilitator_seat.value: facilitator_seats,
            ResourceType.storyteller_seat.value: storyteller_seats,
        }
        for resource_type, amount in opening.items():
            if amount and not validate_amount(amount):
                raise ValidationError(f"Invalid opening balance for {resource_type}: {amount!r}")
        grants = {rt: int(a) for rt, a in opening.items() if a}

        try:
            async with self.session_maker() as db:
                async with db.begin():
                    if await self._lock_wallet(db, user_id) is not None:
                        raise ValidationError(f"Wallet already exists for user {user_id}")
                    wallet = ResourceWallet(
                        user_id=user_id,
                        project_vouchers=0,
                        facilitator_seats=0,
                        storyteller_seats=0,
                    )
                    db.add(wallet)
                    await db.flush()
                    entries = self._credit(
                        user_id, grants, TransactionType.grant.value, None, "Initial wallet creation", None
                    )(wallet)
                    db.add_all(entries)
                    await db.flush()
        except IntegrityError as exc:
            if await self._wallet_was_raced(user_id):
                raise ValidationError(f"Wallet already exists for user {user_id}") from exc
            raise ConstraintViolationError(f"Cannot create wallet for unknown user {user_id}") from exc
        except SQLAlchemyError as exc:
            logger.exception("Creating wallet for user %s failed", user_id)
            raise TransientStoreError("Ledger store unavailable") from exc

        await self._dispatch(entries)
        return wallet

    async def get_wallet(self, user_id: int) -> Optional[ResourceWallet]:
        async with self.session_maker() as db:
            return (
                await db.execute(select(ResourceWallet).where(ResourceWallet.user_id == user_id))
            ).scalars().first()

    async def get_or_create_wallet(self, user_id: int) -> ResourceWallet:
        wallet = await self.get_wallet(user_id)
        if wallet is not None:
            return wallet
        try:
            return await self.create_wallet(user_id)
        except ValidationError:
            # created concurrently
            wallet = await self.get_wallet(user_id)
            if wallet is None:
                raise
            return wallet

    def wallet_value(self, wallet: Optional[ResourceWallet]) -> float:
        if wallet is None:
            return 0.0
        total = sum(balance_of(wallet, rt) * price for rt, price in self.prices.items())
        return round(total, 2)

    async def get_wallet_balance(self, user_id: int) -> WalletBalance:
        wallet = await self.get_wallet(user_id)
        if wallet is None:
            return WalletBalance()
        return WalletBalance(
            project_vouchers=wallet.project_vouchers,
            facilitator_seats=wallet.facilitator_seats,
            storyteller_seats=wallet.storyteller_seats,
            total_value=self.wallet_value(wallet),
        )

    async def has_resources(self, user_id: int, resource_type: str, amount: int) -> bool:
        """``balance >= |amount|``; a zero requirement is always met."""
        resource_type = _require_resource_type(resource_type)
        if amount == 0 and not isinstance(amount, bool):
            return True
        amount = _require_amount(amount)
        wallet = await self.get_wallet(user_id)
        if wallet is None:
            return False
        return balance_of(wallet, resource_type) >= amount

    async def can_create_project(self, user_id: int) -> bool:
        return await self.has_resources(user_id, ResourceType.project_voucher.value, 1)

    async def can_invite_facilitator(self, user_id: int) -> bool:
        return await self.has_resources(user_id, ResourceType.facilitator_seat.value, 1)

    async def can_invite_storyteller(self, user_id: int) -> bool:
        return await self.has_resources(user_id, ResourceType.storyteller_seat.value, 1)

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------
    async def consume_resources(
        self,
        user_id: int,
        resource_type: str,
        amount: int,
        project_id: Optional[int] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> ResourceWallet:
        resource_type = _require_resource_type(resource_type)
        amount = _require_amount(amount)
        wallet, _ = await self._atomic(
            user_id,
            self._debit(
                user_id,
                resource_type,
                amount,
                TransactionType.consume.value,
                project_id,
                description or f"Consumed {amount} {resource_type}",
                metadata,
            ),
            create_missing=False,
        )
        return wallet

    async def consume_project_voucher(self, user_id: int, project_id: int) -> ResourceWallet:
        return await self.consume_resources(
            user_id, ResourceType.project_voucher.value, 1, project_id, "Project creation"
        )

    async def consume_facilitator_seat(self, user_id: int, project_id: int) -> ResourceWallet:
        return await self.consume_resources(
            user_id, ResourceType.facilitator_seat.value, 1, project_id, "Facilitator invitation"
        )

    async def consume_storyteller_seat(self, user_id: int, project_id: int) -> ResourceWallet:
        return await self.consume_resources(
            user_id, ResourceType.storyteller_seat.value, 1, project_id, "Storyteller invitation"
        )

    async def expire_resources(
        self,
        user_id: int,
        resource_type: str,
        amount: int,
        description: Optional[str] = None,
    ) -> ResourceWallet:
        resource_type = _require_resource_type(resource_type)
        amount = _require_amount(amount)
        wallet, _ = await self._atomic(
            user_id,
            self._debit(
                user_id,
                resource_type,
                amount,
                TransactionType.expire.value,
                None,
                description or f"Expired {amount} {resource_type}",
                None,
            ),
            create_missing=False,
        )
        return wallet

    async def credit_resources(
        self,
        user_id: int,
        resource_type: str,
        amount: int,
        transaction_type: str = TransactionType.purchase.value,
        description: Optional[str] = None,
        project_id: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> ResourceWallet:
        resource_type = _require_resource_type(resource_type)
        transaction_type = _require_transaction_type(transaction_type)
        if transaction_type not in CREDIT_TYPES:
            raise ValidationError(f"{transaction_type} is not a credit transaction type")
        amount = _require_amount(amount)
        wallet, _ = await self._atomic(
            user_id,
            self._credit(user_id, {resource_type: amount}, transaction_type, project_id, description, metadata),
            create_missing=True,
        )
        return wallet

    async def refund_resources(
        self,
        user_id: int,
        resource_type: str,
        amount: int,
        description: str,
        project_id: Optional[int] = None,
    ) -> ResourceWallet:
        return await self.credit_resources(
            user_id, resource_type, amount, TransactionType.refund.value, description, project_id
        )

    async def credit_package(
        self,
        user_id: int,
        resources: dict[str, int],
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
        transaction_type: str = TransactionType.purchase.value,
    ) -> ResourceWallet:
        """Credit several resource types of one wallet in a single transaction."""
        transaction_type = _require_transaction_type(transaction_type)
        if transaction_type not in CREDIT_TYPES:
            raise ValidationError(f"{transaction_type} is not a credit transaction type")
        amounts: dict[str, int] = {}
        for resource_type, amount in (resources or {}).items():
            resource_type = _require_resource_type(resource_type)
            if amount in (0, None):
                continue
            amounts[resource_type] = _require_amount(amount)
        if not amounts:
            raise ValidationError("Package grants no resources")
        wallet, _ = await self._atomic(
            user_id,
            self._credit(user_id, amounts, transaction_type, None, description, metadata),
            create_missing=True,
        )
        return wallet

    # ------------------------------------------------------------------
    # ledger reads
    # ------------------------------------------------------------------
    async def get_transaction_history(
        self,
        user_id: int,
        *,
        resource_type: Optional[str] = None,
        transaction_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> list[SeatTransaction]:
        stmt = select(SeatTransaction).where(SeatTransaction.user_id == user_id)
        if resource_type is not None:
            stmt = stmt.where(SeatTransaction.resource_type == _require_resource_type(resource_type))
        if transaction_type is not None:
            stmt = stmt.where(SeatTransaction.transaction_type == _require_transaction_type(transaction_type))
        if start_date is not None:
            stmt = stmt.where(SeatTransaction.created_at >= start_date)
        if end_date is not None:
            stmt = stmt.where(SeatTransaction.created_at <= end_date)

        if sort_by not in HISTORY_SORT_COLUMNS:
            raise ValidationError(f"sortBy must be one of {', '.join(HISTORY_SORT_COLUMNS)}")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be 'asc' or 'desc'")
        direction = asc if sort_order == "asc" else desc
        stmt = stmt.order_by(direction(HISTORY_SORT_COLUMNS[sort_by]), direction(SeatTransaction.id))

        if limit is not None:
            if limit < 1:
                raise ValidationError("limit must be >= 1")
            stmt = stmt.limit(limit)
        if offset:
            if offset < 0:
                raise ValidationError("offset must be >= 0")
            stmt = stmt.offset(offset)

        async with self.session_maker() as db:
            return list((await db.execute(stmt)).scalars().all())

    async def get_transaction(self, transaction_id: int) -> Optional[SeatTransaction]:
        async with self.session_maker() as db:
            return await db.get(SeatTransaction, transaction_id)

    async def get_project_transactions(self, project_id: int) -> list[SeatTransaction]:
        async with self.session_maker() as db:
            rows = await db.execute(
                select(SeatTransaction)
                .where(SeatTransaction.project_id == project_id)
                .order_by(SeatTransaction.created_at.desc(), SeatTransaction.id.desc())
            )
            return list(rows.scalars().all())

    @staticmethod
    def _empty_breakdown() -> tuple[dict[str, int], dict[str, int]]:
        return {t.value: 0 for t in TransactionType}, {r: 0 for r in RESOURCE_COLUMNS}

    async def get_user_transaction_stats(self, user_id: int) -> dict:
        transactions = await self.get_transaction_history(user_id)
        by_type, by_resource = self._empty_breakdown()
        spent = earned = 0
        for tx in transactions:
            by_type[tx.transaction_type] = by_type.get(tx.transaction_type, 0) + 1
            by_resource[tx.resource_type] = by_resource.get(tx.resource_type, 0) + abs(tx.amount)
            if tx.amount < 0:
                spent += abs(tx.amount)
            else:
                earned += tx.amount
        return {
            "totalTransactions": len(transactions),
            "totalSpent": spent,
            "totalEarned": earned,
            "byType": by_type,
            "byResource": by_resource,
        }

    async def get_system_stats(self) -> dict:
        tx_count = func.count(SeatTransaction.id).label("transaction_count")
        async with self.session_maker() as db:
            total = (await db.execute(select(func.count(SeatTransaction.id)))).scalar_one()
            users = (await db.execute(select(func.count(func.distinct(SeatTransaction.user_id))))).scalar_one()
            recent = (
                await db.execute(
                    select(SeatTransaction)
                    .order_by(SeatTransaction.created_at.desc(), SeatTransaction.id.desc())
                    .limit(10)
                )
            ).scalars().all()
            top = (
                await db.execute(
                    select(SeatTransaction.user_id, tx_count, func.sum(SeatTransaction.amount))
                    .group_by(SeatTransaction.user_id)
                    .order_by(tx_count.desc(), SeatTransaction.user_id.asc())
                    .limit(10)
                )
            ).all()
        return {
            "totalTransactions": int(total or 0),
            "totalUsers": int(users or 0),
            "recentTransactions": [serialize_transaction(tx) for tx in recent],
            "topUsers": [
                {"userId": uid, "transactionCount": int(count), "totalAmount": int(amount or 0)}
                for uid, count, amount in top
            ],
        }

    @staticmethod
    def _period_key(created_at: datetime, group_by: str) -> str:
        if group_by == "month":
            return f"{created_at.year:04d}-{created_at.month:02d}"
        if group_by == "week":
            # weeks start on Sunday
            start = created_at.date() - timedelta(days=(created_at.weekday() + 1) % 7)
            return start.isoformat()
        return created_at.date().isoformat()

    async def get_transaction_summary(
        self,
        start_date: datetime,
        end_date: datetime,
        group_by: str = "day",
    ) -> list[dict]:
        if group_by not in SUMMARY_PERIODS:
            raise ValidationError(f"groupBy must be one of {', '.join(SUMMARY_PERIODS)}")
        async with self.session_maker() as db:
            transactions = (
                await db.execute(
                    select(SeatTransaction)
                    .where(SeatTransaction.created_at >= start_date, SeatTransaction.created_at <= end_date)
                    .order_by(SeatTransaction.created_at.asc())
                )
            ).scalars().all()

        periods: dict[str, dict] = {}
        for tx in transactions:
            key = self._period_key(tx.created_at, group_by)
            if key not in periods:
                by_type, by_resource = self._empty_breakdown()
                periods[key] = {
                    "period": key,
                    "totalTransactions": 0,
                    "totalAmount": 0,
                    "byType": by_type,
                    "byResource": by_resource,
                }
            bucket = periods[key]
            bucket["totalTransactions"] += 1
            bucket["totalAmount"] += abs(tx.amount)
            bucket["byType"][tx.transaction_type] += 1
            bucket["byResource"][tx.resource_type] += abs(tx.amount)
        return [periods[k] for k in sorted(periods)]

    async def get_wallet_stats(self, user_id: int) -> dict:
        wallet = await self.get_wallet(user_id)
        recent = await self.get_transaction_history(user_id, limit=10)
        balance = await self.get_wallet_balance(user_id)
        return {
            "currentBalance": {
                "projectVouchers": balance.project_vouchers,
                "facilitatorSeats": balance.facilitator_seats,
                "storytellerSeats": balance.storyteller_seats,
            },
            "totalValue": balance.total_value,
            "recentTransactions": [serialize_transaction(tx) for tx in recent],
            "createdAt": wallet.created_at.isoformat() if wallet and wallet.created_at else None,
            "lastUpdated": wallet.updated_at.isoformat() if wallet and wallet.updated_at else None,
        }

    async def reconcile(self, user_id: int) -> dict[str, dict]:
        """Compare each balance with the signed sum of its ledger rows."""
        async with self.session_maker() as db:
            wallet = (
                await db.execute(select(ResourceWallet).where(ResourceWallet.user_id == user_id))
            ).scalars().first()
            sums = dict(
                (
                    await db.execute(
                        select(SeatTransaction.resource_type, func.sum(SeatTransaction.amount))
                        .where(SeatTransaction.user_id == user_id)
                        .group_by(SeatTransaction.resource_type)
                    )
                ).all()
            )
        report = {}
        for resource_type in RESOURCE_COLUMNS:
            balance = balance_of(wallet, resource_type) if wallet else 0
            ledger_sum = int(sums.get(resource_type) or 0)
            report[resource_type] = {"balance": balance, "ledgerSum": ledger_sum, "ok": balance == ledger_sum}
        return report


__all__ = [
    "ResourceLedger",
    "LedgerEventHandler",
    "LoggingLedgerHandler",
    "validate_resource_type",
    "validate_transaction_type",
    "validate_amount",
    "RESOURCE_COLUMNS",
]
