"""
Account management endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, get_banking_system, get_principal, require_roles
from .schemas import CreateAccountRequest, UpdateStatusRequest
from ..identity import Principal, Role, PRIVILEGED_ROLES


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_account(
    request: CreateAccountRequest,
    principal: Principal = Depends(get_principal),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open an account for the caller"""
    account = system.account_manager.create_account(
        principal,
        account_type=request.type,
        initial_deposit=request.initial_deposit
    )
    return {"message": "Account created successfully", "data": account.public_dict()}


@router.get("")
async def list_accounts(
    principal: Principal = Depends(
        require_roles(PRIVILEGED_ROLES, "Access denied. Admins and staff only.")
    ),
    system: BankingSystem = Depends(get_banking_system)
):
    """List every account with owner details"""
    return {"data": system.account_manager.list_all(principal)}


@router.get("/user/{user_id}")
async def list_user_accounts(
    user_id: str,
    principal: Principal = Depends(get_principal),
    system: BankingSystem = Depends(get_banking_system)
):
    """List the accounts of one user"""
    return {"data": system.account_manager.list_for_user(principal, user_id)}


@router.patch("/{account_id}/status")
async def update_account_status(
    account_id: str,
    request: UpdateStatusRequest,
    principal: Principal = Depends(
        require_roles(PRIVILEGED_ROLES, "Access denied. Admins & Staff only.")
    ),
    system: BankingSystem = Depends(get_banking_system)
):
    """Change an account's status"""
    account = system.account_manager.update_status(principal, account_id, request.status)
    return {"message": "Account status updated", "data": account.public_dict()}


@router.delete("/{account_id}")
async def delete_account(
    account_id: str,
    principal: Principal = Depends(require_roles({Role.ADMIN}, "Access denied. Admins only.")),
    system: BankingSystem = Depends(get_banking_system)
):
    """Hard-delete an account"""
    system.account_manager.delete_account(principal, account_id)
    return {"message": "Account deleted successfully"}
