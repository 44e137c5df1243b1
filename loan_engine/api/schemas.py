"""
Pydantic schemas for API requests and responses

Monetary amounts, rates and probabilities travel as decimal strings.
"""

from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field


# Calculator schemas
class ScheduleRequest(BaseModel):
    principal: str = Field(..., description="Decimal amount as string")
    annual_rate: str = Field(..., description="Annual rate in percent, e.g. '12'")
    term_months: int
    start_date: date
    convention: str = Field("reducing", description="simple, compound, flat, declining or reducing")


class AprRequest(BaseModel):
    monthly_payment: str
    principal: str
    term_months: int


class AprResponse(BaseModel):
    apr: str
    iterations: int
    converged: bool


class CostComparisonRequest(BaseModel):
    principal: str
    annual_rate: str
    term_months: int


class AllocationRequest(BaseModel):
    amount: str
    penalties_due: str = "0"
    fees_due: str = "0"
    interest_due: str = "0"
    principal_due: str = "0"
    order: Optional[List[str]] = Field(None, description="Bucket priority, e.g. ['interest', 'principal']")


class ArrearsRequest(BaseModel):
    due_date: Optional[date] = None
    as_of: date


class StagingRequest(BaseModel):
    days_overdue: int
    exposure_at_default: str
    base_pd: Optional[str] = None
    loss_given_default: Optional[str] = None


class ProvisioningRequest(BaseModel):
    days_overdue: int
    outstanding_balance: str


# Loan schemas
class OpenLoanRequest(BaseModel):
    loan_number: str
    customer_id: str
    principal: str
    annual_interest_rate: str
    term_months: int
    disbursement_date: date
    interest_convention: str = "reducing"
    currency: str = "ZMW"
    organisation_id: Optional[str] = None


class LoanResponse(BaseModel):
    id: str
    loan_number: str
    customer_id: str
    organisation_id: Optional[str] = None
    principal: str
    annual_interest_rate: str
    term_months: int
    outstanding_balance: str
    status: str
    interest_convention: str
    currency: str
    disbursement_date: Optional[str] = None
    next_payment_date: Optional[str] = None
    last_payment_date: Optional[str] = None
    total_paid: str
    version: int


class RepaymentRequestModel(BaseModel):
    amount: str
    payment_date: date
    payment_method: str = "cash"
    reference: Optional[str] = None
    fees_due: str = "0"


class AsOfRequest(BaseModel):
    as_of: Optional[date] = None


class RestageRequest(BaseModel):
    as_of: Optional[date] = None
    base_pd: Optional[str] = None
    loss_given_default: Optional[str] = None


class PortfolioStagingRequest(BaseModel):
    as_of: date
    loan_ids: Optional[List[str]] = None
    organisation_id: Optional[str] = None


class ErrorResponse(BaseModel):
    reason: str
    detail: str
