"""
Pydantic schemas for API requests
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


# User schemas
class SignupRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str


class SigninRequest(BaseModel):
    email: str
    password: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


# Account schemas
class CreateAccountRequest(BaseModel):
    type: str = Field(..., description="Account type (savings, current)")
    initial_deposit: Optional[Decimal] = Field(None, description="Opening balance")


class UpdateStatusRequest(BaseModel):
    status: str = Field(..., description="Account status (active, dormant, closed)")


# Transaction schemas
class AmountRequest(BaseModel):
    amount: Decimal = Field(..., description="Positive amount, 2 decimal places")
