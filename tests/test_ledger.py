import math
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from saga.database import Base
from saga.models import ResourceType, TransactionType, User
from saga.services.errors import (
    ConstraintViolationError,
    InsufficientResourceError,
    ValidationError,
    WalletNotFoundError,
)
from saga.services.ledger import (
    ResourceLedger,
    validate_amount,
    validate_resource_type,
    validate_transaction_type,
)

VOUCHER = ResourceType.project_voucher.value
FACILITATOR = ResourceType.facilitator_seat.value
STORYTELLER = ResourceType.storyteller_seat.value


class RecordingHandler:
    def __init__(self):
        self.seen = []

    async def on_transaction(self, transaction):
        self.seen.append((transaction.transaction_type, transaction.resource_type, transaction.amount))


class ExplodingHandler:
    async def on_transaction(self, transaction):
        raise RuntimeError("downstream is down")


@pytest.fixture
def recorder():
    return RecordingHandler()


@pytest.fixture
def ledger(session_maker, recorder):
    return ResourceLedger(session_maker, handlers=[recorder])


# ---------------------------
# validation
# ---------------------------
@pytest.mark.parametrize("amount", [1, 7, 3.0])
def test_validate_amount_accepts_positive_whole_numbers(amount):
    assert validate_amount(amount) is True


@pytest.mark.parametrize("amount", [0, -1, 2.5, math.nan, math.inf, True, "1", None])
def test_validate_amount_rejects_everything_else(amount):
    assert validate_amount(amount) is False


def test_validate_resource_type():
    assert validate_resource_type(VOUCHER)
    assert not validate_resource_type("gold_coin")
    assert not validate_resource_type(None)


# ---------------------------
# wallet lifecycle
# ---------------------------
@pytest.mark.asyncio
async def test_create_wallet_writes_opening_grants(ledger, recorder, seed):
    wallet = await ledger.create_wallet(seed["alice"], project_vouchers=1, storyteller_seats=3)

    assert (wallet.project_vouchers, wallet.facilitator_seats, wallet.storyteller_seats) == (1, 0, 3)
    history = await ledger.get_transaction_history(seed["alice"], sort_order="asc")
    assert [(t.transaction_type, t.resource_type, t.amount) for t in history] == [
        ("grant", VOUCHER, 1),
        ("grant", STORYTELLER, 3),
    ]
    assert all(t.description == "Initial wallet creation" for t in history)
    assert len(recorder.seen) == 2


@pytest.mark.asyncio
async def test_create_wallet_twice_is_rejected(ledger, seed):
    await ledger.create_wallet(seed["alice"])
    with pytest.raises(ValidationError):
        await ledger.create_wallet(seed["alice"])


@pytest.mark.asyncio
async def test_get_or_create_wallet(ledger, seed):
    first = await ledger.get_or_create_wallet(seed["bob"])
    second = await ledger.get_or_create_wallet(seed["bob"])
    assert first.id == second.id


@pytest.mark.asyncio
async def test_missing_wallet_reads_as_empty(ledger, seed):
    assert await ledger.get_wallet(seed["carol"]) is None
    assert await ledger.has_resources(seed["carol"], VOUCHER, 1) is False
    balance = await ledger.get_wallet_balance(seed["carol"])
    assert balance.project_vouchers == 0
    assert balance.total_value == 0.0


@pytest.mark.asyncio
async def test_wallet_balance_total_value(ledger, seed):
    await ledger.create_wallet(seed["alice"], 1, 1, 1)
    balance = await ledger.get_wallet_balance(seed["alice"])
    assert balance.total_value == pytest.approx(44.97)


# ---------------------------
# consume
# ---------------------------
@pytest.mark.asyncio
async def test_consume_debits_and_logs(ledger, recorder, seed):
    await ledger.create_wallet(seed["alice"], storyteller_seats=5)
    recorder.seen.clear()

    wallet = await ledger.consume_resources(seed["alice"], STORYTELLER, 2, project_id=seed["project"])

    assert wallet.storyteller_seats == 3
    latest = (await ledger.get_transaction_history(seed["alice"], limit=1))[0]
    assert latest.transaction_type == "consume"
    assert latest.amount == -2
    assert latest.project_id == seed["project"]
    assert recorder.seen == [("consume", STORYTELLER, -2)]


@pytest.mark.asyncio
async def test_consume_without_wallet(ledger, seed):
    with pytest.raises(WalletNotFoundError) as exc:
        await ledger.consume_resources(seed["carol"], VOUCHER, 1)
    assert str(exc.value) == "Wallet not found"


@pytest.mark.asyncio
async def test_insufficient_balance_leaves_state_untouched(ledger, recorder, seed):
    await ledger.create_wallet(seed["alice"], storyteller_seats=2)
    recorder.seen.clear()

    with pytest.raises(InsufficientResourceError) as exc:
        await ledger.consume_resources(seed["alice"], STORYTELLER, 3)

    assert str(exc.value) == "Insufficient storyteller_seat. Required: 3, Available: 2"
    assert exc.value.to_dict()["available"] == 2
    assert (await ledger.get_wallet(seed["alice"])).storyteller_seats == 2
    assert len(await ledger.get_transaction_history(seed["alice"])) == 1
    assert recorder.seen == []


@pytest.mark.asyncio
async def test_consume_rejects_bad_input(ledger, seed):
    await ledger.create_wallet(seed["alice"], project_vouchers=2)
    with pytest.raises(ValidationError):
        await ledger.consume_resources(seed["alice"], "gold_coin", 1)
    with pytest.raises(ValidationError):
        await ledger.consume_resources(seed["alice"], VOUCHER, 0)
    with pytest.raises(ValidationError):
        await ledger.consume_resources(seed["alice"], VOUCHER, 1.5)


@pytest.mark.asyncio
async def test_has_resources_compares_absolute_amounts(ledger, seed):
    await ledger.create_wallet(seed["alice"], project_vouchers=2)
    assert await ledger.has_resources(seed["alice"], VOUCHER, 2) is True
    assert await ledger.has_resources(seed["alice"], VOUCHER, -2) is True
    assert await ledger.has_resources(seed["alice"], VOUCHER, 3) is False
    assert await ledger.has_resources(seed["alice"], FACILITATOR, 0) is True
    with pytest.raises(ValidationError):
        await ledger.has_resources(seed["alice"], VOUCHER, 1.5)


@pytest.mark.asyncio
async def test_convenience_consumers(ledger, seed):
    await ledger.create_wallet(seed["alice"], 1, 1, 1)
    assert await ledger.can_create_project(seed["alice"])

    await ledger.consume_project_voucher(seed["alice"], seed["project"])
    await ledger.consume_facilitator_seat(seed["alice"], seed["project"])
    await ledger.consume_storyteller_seat(seed["alice"], seed["project"])

    assert not await ledger.can_create_project(seed["alice"])
    assert not await ledger.can_invite_facilitator(seed["alice"])
    assert not await ledger.can_invite_storyteller(seed["alice"])
    descriptions = {t.description for t in await ledger.get_project_transactions(seed["project"])}
    assert descriptions == {"Project creation", "Facilitator invitation", "Storyteller invitation"}


@pytest.mark.asyncio
async def test_expire_removes_units(ledger, seed):
    await ledger.create_wallet(seed["alice"], facilitator_seats=4)
    wallet = await ledger.expire_resources(seed["alice"], FACILITATOR, 3)
    assert wallet.facilitator_seats == 1
    history = await ledger.get_transaction_history(seed["alice"], transaction_type="expire")
    assert [t.amount for t in history] == [-3]


# ---------------------------
# credit
# ---------------------------
@pytest.mark.asyncio
async def test_credit_creates_missing_wallet(ledger, seed):
    wallet = await ledger.credit_resources(seed["bob"], VOUCHER, 2)
    assert wallet.project_vouchers == 2
    history = await ledger.get_transaction_history(seed["bob"])
    assert [(t.transaction_type, t.amount) for t in history] == [("purchase", 2)]


@pytest.mark.asyncio
async def test_credit_refuses_debit_types(ledger, seed):
    with pytest.raises(ValidationError):
        await ledger.credit_resources(seed["bob"], VOUCHER, 1, transaction_type="consume")
    with pytest.raises(ValidationError):
        await ledger.credit_resources(seed["bob"], VOUCHER, 1, transaction_type="bonus")


@pytest.mark.asyncio
async def test_credit_over_limit_writes_nothing(session_maker, seed):
    ledger = ResourceLedger(session_maker, handlers=[], max_balance=10)
    await ledger.create_wallet(seed["bob"], storyteller_seats=8)

    with pytest.raises(ValidationError):
        await ledger.credit_resources(seed["bob"], STORYTELLER, 3)

    assert (await ledger.get_wallet(seed["bob"])).storyteller_seats == 8
    assert len(await ledger.get_transaction_history(seed["bob"])) == 1


@pytest.mark.asyncio
async def test_refund(ledger, seed):
    await ledger.create_wallet(seed["alice"], project_vouchers=1)
    await ledger.consume_project_voucher(seed["alice"], seed["project"])
    wallet = await ledger.refund_resources(seed["alice"], VOUCHER, 1, "Project cancelled", seed["project"])

    assert wallet.project_vouchers == 1
    refund = (await ledger.get_transaction_history(seed["alice"], transaction_type="refund"))[0]
    assert refund.amount == 1
    assert refund.description == "Project cancelled"


@pytest.mark.asyncio
async def test_credit_package_writes_one_row_per_resource(ledger, seed):
    wallet = await ledger.credit_package(
        seed["alice"],
        {VOUCHER: 1, FACILITATOR: 2, STORYTELLER: 0},
        description="Family package",
        metadata={"order": "A-100"},
    )

    assert (wallet.project_vouchers, wallet.facilitator_seats, wallet.storyteller_seats) == (1, 2, 0)
    history = await ledger.get_transaction_history(seed["alice"], sort_order="asc")
    assert sorted((t.resource_type, t.amount) for t in history) == [(FACILITATOR, 2), (VOUCHER, 1)]
    assert all(t.meta == {"order": "A-100"} for t in history)


@pytest.mark.asyncio
async def test_credit_package_rejects_empty_package(ledger, seed):
    with pytest.raises(ValidationError):
        await ledger.credit_package(seed["alice"], {VOUCHER: 0})


@pytest_asyncio.fixture
async def fk_session_maker(tmp_path):
    """SQLite with foreign keys enforced, the way PostgreSQL always is."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fk.db'}")

    @event.listens_for(eng.sync_engine, "connect")
    def _enforce_fks(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessionmaker(eng, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await eng.dispose()


@pytest.mark.asyncio
async def test_credit_to_unknown_user_is_rejected_not_retried(fk_session_maker):
    opened = []

    def counting_session_maker():
        opened.append(1)
        return fk_session_maker()

    ledger = ResourceLedger(counting_session_maker, handlers=[], max_retries=3)

    with pytest.raises(ConstraintViolationError) as excinfo:
        await ledger.credit_resources(9999, VOUCHER, 1)
    # one write attempt plus one wallet lookup, no retries
    assert len(opened) == 2

    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.status_code == 400
    assert excinfo.value.code == "CONSTRAINT_VIOLATION"
    assert await ledger.get_wallet(9999) is None
    assert await ledger.get_transaction_history(9999) == []

    with pytest.raises(ConstraintViolationError):
        await ledger.create_wallet(9999, project_vouchers=1)


@pytest.mark.asyncio
async def test_credit_with_foreign_keys_enforced(fk_session_maker):
    async with fk_session_maker() as db:
        user = User(email="dana@example.com", username="dana")
        db.add(user)
        await db.commit()

    ledger = ResourceLedger(fk_session_maker, handlers=[])
    wallet = await ledger.credit_resources(user.id, VOUCHER, 2)
    assert wallet.project_vouchers == 2


# ---------------------------
# handlers
# ---------------------------
@pytest.mark.asyncio
async def test_failing_handler_does_not_undo_commit(session_maker, recorder, seed):
    ledger = ResourceLedger(session_maker, handlers=[ExplodingHandler(), recorder])
    wallet = await ledger.credit_resources(seed["alice"], VOUCHER, 1)

    assert wallet.project_vouchers == 1
    assert (await ledger.get_wallet(seed["alice"])).project_vouchers == 1
    assert recorder.seen == [("purchase", VOUCHER, 1)]


# ---------------------------
# reads and reports
# ---------------------------
@pytest.mark.asyncio
async def test_reconcile_after_mixed_operations(ledger, seed):
    uid = seed["alice"]
    await ledger.create_wallet(uid, 2, 2, 5)
    await ledger.consume_resources(uid, STORYTELLER, 3)
    await ledger.credit_resources(uid, FACILITATOR, 4, transaction_type="grant")
    await ledger.expire_resources(uid, VOUCHER, 1)
    await ledger.refund_resources(uid, STORYTELLER, 1, "Invitation declined")

    report = await ledger.reconcile(uid)
    assert report[VOUCHER] == {"balance": 1, "ledgerSum": 1, "ok": True}
    assert report[FACILITATOR] == {"balance": 6, "ledgerSum": 6, "ok": True}
    assert report[STORYTELLER] == {"balance": 3, "ledgerSum": 3, "ok": True}


@pytest.mark.asyncio
async def test_history_filters_and_sorting(ledger, seed):
    uid = seed["alice"]
    await ledger.create_wallet(uid, storyteller_seats=10)
    await ledger.consume_resources(uid, STORYTELLER, 4)
    await ledger.consume_resources(uid, STORYTELLER, 1)
    await ledger.credit_resources(uid, VOUCHER, 2)

    consumes = await ledger.get_transaction_history(uid, transaction_type="consume")
    assert [t.amount for t in consumes] == [-1, -4]

    by_amount = await ledger.get_transaction_history(uid, sort_by="amount", sort_order="asc")
    assert [t.amount for t in by_amount] == [-4, -1, 2, 10]

    vouchers = await ledger.get_transaction_history(uid, resource_type=VOUCHER)
    assert [t.amount for t in vouchers] == [2]

    paged = await ledger.get_transaction_history(uid, limit=2, offset=1)
    assert len(paged) == 2

    future = datetime.now(timezone.utc) + timedelta(days=1)
    assert await ledger.get_transaction_history(uid, start_date=future) == []

    with pytest.raises(ValidationError):
        await ledger.get_transaction_history(uid, sort_by="description")
    with pytest.raises(ValidationError):
        await ledger.get_transaction_history(uid, sort_order="sideways")


@pytest.mark.asyncio
async def test_user_transaction_stats(ledger, seed):
    uid = seed["alice"]
    await ledger.create_wallet(uid, project_vouchers=2)
    await ledger.consume_resources(uid, VOUCHER, 1)
    await ledger.credit_resources(uid, STORYTELLER, 3)

    stats = await ledger.get_user_transaction_stats(uid)
    assert stats["totalTransactions"] == 3
    assert stats["totalSpent"] == 1
    assert stats["totalEarned"] == 5
    assert stats["byType"] == {"purchase": 1, "consume": 1, "refund": 0, "grant": 1, "expire": 0}
    assert stats["byResource"] == {VOUCHER: 3, FACILITATOR: 0, STORYTELLER: 3}


@pytest.mark.asyncio
async def test_system_stats(ledger, seed):
    await ledger.create_wallet(seed["alice"], 1, 1, 1)
    await ledger.credit_resources(seed["bob"], VOUCHER, 1)

    stats = await ledger.get_system_stats()
    assert stats["totalTransactions"] == 4
    assert stats["totalUsers"] == 2
    assert len(stats["recentTransactions"]) == 4
    assert stats["topUsers"][0] == {"userId": seed["alice"], "transactionCount": 3, "totalAmount": 3}


@pytest.mark.asyncio
async def test_wallet_stats(ledger, seed):
    await ledger.create_wallet(seed["alice"], 1, 0, 2)
    stats = await ledger.get_wallet_stats(seed["alice"])
    assert stats["currentBalance"] == {"projectVouchers": 1, "facilitatorSeats": 0, "storytellerSeats": 2}
    assert stats["totalValue"] == pytest.approx(29.99 + 2 * 4.99)
    assert len(stats["recentTransactions"]) == 2
    assert stats["createdAt"] is not None


@pytest.mark.asyncio
async def test_transaction_summary_by_day(ledger, seed):
    await ledger.create_wallet(seed["alice"], storyteller_seats=3)
    await ledger.consume_resources(seed["alice"], STORYTELLER, 1)

    now = datetime.now(timezone.utc)
    summary = await ledger.get_transaction_summary(now - timedelta(days=1), now + timedelta(days=1))

    assert sum(p["totalTransactions"] for p in summary) == 2
    assert sum(p["totalAmount"] for p in summary) == 4
    assert sum(p["byType"]["consume"] for p in summary) == 1

    with pytest.raises(ValidationError):
        await ledger.get_transaction_summary(now, now, group_by="year")


def test_summary_periods():
    wednesday = datetime(2024, 3, 6, 15, 0)
    sunday = datetime(2024, 3, 3, 9, 0)
    assert ResourceLedger._period_key(wednesday, "day") == "2024-03-06"
    assert ResourceLedger._period_key(wednesday, "week") == "2024-03-03"
    assert ResourceLedger._period_key(sunday, "week") == "2024-03-03"
    assert ResourceLedger._period_key(wednesday, "month") == "2024-03"


def test_transaction_types_are_the_known_five():
    assert {t.value for t in TransactionType} == {"purchase", "consume", "refund", "grant", "expire"}


def test_validate_transaction_type():
    assert validate_transaction_type("refund")
    assert not validate_transaction_type("bonus")
    assert not validate_transaction_type(3)


@pytest.mark.asyncio
async def test_get_transaction_by_id(ledger, seed):
    await ledger.create_wallet(seed["alice"], project_vouchers=1)
    grant = (await ledger.get_transaction_history(seed["alice"]))[0]

    fetched = await ledger.get_transaction(grant.id)
    assert fetched.amount == 1
    assert fetched.transaction_type == "grant"
    assert await ledger.get_transaction(999) is None


@pytest.mark.asyncio
async def test_default_handler_logs_each_row(session_maker, seed, caplog):
    ledger = ResourceLedger(session_maker)
    with caplog.at_level("INFO", logger="saga.services.ledger"):
        await ledger.credit_resources(seed["alice"], VOUCHER, 2)
    assert any("Ledger purchase" in rec.getMessage() for rec in caplog.records)
