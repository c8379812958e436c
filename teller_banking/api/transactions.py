"""
Transaction endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, get_banking_system, get_principal, require_roles
from .schemas import AmountRequest
from ..identity import Principal, Role


router = APIRouter()

staff_only = require_roles({Role.STAFF}, "Access denied. Staff only.")


@router.post("/{account_id}/credit", status_code=status.HTTP_201_CREATED)
async def credit_account(
    account_id: str,
    request: AmountRequest,
    principal: Principal = Depends(staff_only),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit money into an account"""
    transaction = system.transaction_engine.credit(principal, account_id, request.amount)
    return {"message": "Account credited successfully", "data": transaction.public_dict()}


@router.post("/{account_id}/debit", status_code=status.HTTP_201_CREATED)
async def debit_account(
    account_id: str,
    request: AmountRequest,
    principal: Principal = Depends(staff_only),
    system: BankingSystem = Depends(get_banking_system)
):
    """Withdraw money from an account"""
    transaction = system.transaction_engine.debit(principal, account_id, request.amount)
    return {"message": "Account debited successfully", "data": transaction.public_dict()}


@router.get("/{account_id}/transactions")
async def get_account_transactions(
    account_id: str,
    principal: Principal = Depends(get_principal),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transaction history for an account the caller owns, newest first"""
    transactions = system.transaction_engine.get_history(principal, account_id)
    return {"data": [txn.public_dict() for txn in transactions]}


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    principal: Principal = Depends(get_principal),
    system: BankingSystem = Depends(get_banking_system)
):
    """One transaction on an account the caller owns"""
    transaction = system.transaction_engine.get_transaction(principal, transaction_id)
    return {"data": transaction.public_dict()}
