"""
Signup, signin, staff creation and password reset endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, get_banking_system, get_principal, require_roles
from .schemas import (
    PasswordResetConfirm, PasswordResetRequest, SigninRequest, SignupRequest
)
from ..identity import Principal, Role


router = APIRouter()


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a new user"""
    user, token = system.user_manager.signup(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        password=request.password
    )
    return {
        "message": "User registered successfully",
        "user": user.public_dict(),
        "token": token
    }


@router.post("/signin")
async def signin(
    request: SigninRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Exchange credentials for a session token"""
    user, token = system.user_manager.signin(request.email, request.password)
    return {
        "message": "Login successful",
        "user": user.public_dict(),
        "token": token
    }


@router.post("/signup-staff", status_code=status.HTTP_201_CREATED)
async def signup_staff(
    request: SignupRequest,
    principal: Principal = Depends(require_roles({Role.ADMIN}, "Access denied. Admins only.")),
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a staff (cashier) user"""
    user, token = system.user_manager.create_staff(
        principal,
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        password=request.password
    )
    return {
        "message": "Staff account created successfully",
        "user": user.public_dict(),
        "token": token
    }


@router.post("/password-reset/request")
async def request_password_reset(
    request: PasswordResetRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Issue a password-reset token"""
    token = system.user_manager.request_password_reset(request.email)
    response = {"message": "Password reset link sent to email"}
    if system.config.expose_reset_token:
        response["reset_token"] = token
    return response


@router.post("/password-reset/reset")
async def reset_password(
    request: PasswordResetConfirm,
    system: BankingSystem = Depends(get_banking_system)
):
    """Set a new password with a reset token"""
    system.user_manager.reset_password(request.token, request.new_password)
    return {"message": "Password reset successful"}


protected_router = APIRouter()


@protected_router.get("")
async def protected(principal: Principal = Depends(get_principal)):
    """Report the authenticated principal"""
    return {
        "message": "Authorized access",
        "user": {"id": principal.id, "role": principal.role.value}
    }
