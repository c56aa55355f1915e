from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from saga.database import async_session_maker
from saga.models import User
from saga.schemas import ConsumeRequest, CreditRequest, RefundRequest, serialize_transaction
from saga.services.ledger import ResourceLedger, balance_of
from saga.utils import get_current_user, parse_when, require_admin_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/wallets/{user_id}", tags=["wallet"])
admin_router = APIRouter(prefix="/admin/ledger", tags=["admin"])


def get_ledger() -> ResourceLedger:
    return ResourceLedger(async_session_maker)


def _own_wallet(user_id: int, user: User) -> None:
    if user.id != user_id and not user.is_superuser:
        raise HTTPException(status_code=403, detail="Access denied")


# ---------------------------
# Reads
# ---------------------------
@router.get("")
async def wallet_balance(
    user_id: int,
    user: User = Depends(get_current_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    _own_wallet(user_id, user)
    balance = await ledger.get_wallet_balance(user_id)
    return {"success": True, "data": balance.to_wire()}


@router.get("/stats")
async def wallet_stats(
    user_id: int,
    user: User = Depends(get_current_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    _own_wallet(user_id, user)
    stats = await ledger.get_wallet_stats(user_id)
    stats["transactionStats"] = await ledger.get_user_transaction_stats(user_id)
    return {"success": True, "data": stats}


@router.get("/transactions")
async def wallet_transactions(
    user_id: int,
    resource_type: Optional[str] = Query(None, alias="resourceType"),
    transaction_type: Optional[str] = Query(None, alias="transactionType"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    user: User = Depends(get_current_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    _own_wallet(user_id, user)
    transactions = await ledger.get_transaction_history(
        user_id,
        resource_type=resource_type,
        transaction_type=transaction_type,
        start_date=parse_when(start_date, field="startDate"),
        end_date=parse_when(end_date, field="endDate", end_of_day=True),
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "success": True,
        "data": {
            "transactions": [serialize_transaction(tx) for tx in transactions],
            "limit": limit,
            "offset": offset,
        },
    }


@router.get("/check")
async def check_resources(
    user_id: int,
    resource_type: Optional[str] = Query(None, alias="resourceType"),
    amount: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    _own_wallet(user_id, user)
    if not resource_type or amount is None:
        raise HTTPException(status_code=400, detail="Resource type and amount are required")
    has_sufficient = await ledger.has_resources(user_id, resource_type, amount)
    return {"success": True, "data": {"hasSufficient": has_sufficient}}


# ---------------------------
# Mutations
# ---------------------------
@router.post("/consume")
async def consume(
    user_id: int,
    payload: ConsumeRequest,
    user: User = Depends(get_current_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    _own_wallet(user_id, user)
    wallet = await ledger.consume_resources(
        user_id,
        payload.resource_type,
        payload.amount,
        project_id=payload.project_id,
        description=payload.description,
    )
    return {
        "success": True,
        "data": {"remainingBalance": balance_of(wallet, payload.resource_type)},
    }


@router.post("/credit")
async def credit(
    user_id: int,
    payload: CreditRequest,
    user: User = Depends(require_admin_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    wallet = await ledger.credit_resources(
        user_id,
        payload.resource_type,
        payload.amount,
        transaction_type=payload.transaction_type,
        description=payload.description,
        project_id=payload.project_id,
        metadata={"grantedBy": user.id},
    )
    logger.info("Admin %s credited %s %s to user %s", user.id, payload.amount, payload.resource_type, user_id)
    return {
        "success": True,
        "data": {"newBalance": balance_of(wallet, payload.resource_type)},
    }


@router.post("/refund")
async def refund(
    user_id: int,
    payload: RefundRequest,
    user: User = Depends(require_admin_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    wallet = await ledger.refund_resources(
        user_id,
        payload.resource_type,
        payload.amount,
        payload.description,
        project_id=payload.project_id,
    )
    return {
        "success": True,
        "data": {"newBalance": balance_of(wallet, payload.resource_type)},
    }


# ---------------------------
# Admin reports
# ---------------------------
@admin_router.get("/stats")
async def ledger_stats(
    user: User = Depends(require_admin_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    return {"success": True, "data": await ledger.get_system_stats()}


@admin_router.get("/summary")
async def ledger_summary(
    start_date: str = Query(..., alias="startDate"),
    end_date: str = Query(..., alias="endDate"),
    group_by: str = Query("day", alias="groupBy"),
    user: User = Depends(require_admin_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    summary = await ledger.get_transaction_summary(
        parse_when(start_date, field="startDate"),
        parse_when(end_date, field="endDate", end_of_day=True),
        group_by,
    )
    return {"success": True, "data": summary}


@admin_router.get("/reconcile/{user_id}")
async def ledger_reconcile(
    user_id: int,
    user: User = Depends(require_admin_user),
    ledger: ResourceLedger = Depends(get_ledger),
):
    return {"success": True, "data": await ledger.reconcile(user_id)}


__all__ = ["router", "admin_router", "get_ledger"]
