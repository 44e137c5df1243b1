"""
Loan endpoints
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, status

from .dependencies import get_engine
from .schemas import (
    AsOfRequest, LoanResponse, OpenLoanRequest, PortfolioStagingRequest,
    RepaymentRequestModel, RestageRequest
)
from ..currency import Currency
from ..engine import LoanEngine
from ..exceptions import InvalidArgumentError
from ..loans import Loan
from ..repayments import RepaymentRequest


router = APIRouter()
portfolio_router = APIRouter()


def _loan_response(loan: Loan) -> LoanResponse:
    data = loan.to_dict()
    data.pop('created_at')
    data.pop('updated_at')
    return LoanResponse(**data)


def _currency(code: str) -> Currency:
    try:
        return Currency[code.upper()]
    except KeyError:
        raise InvalidArgumentError(f"Unsupported currency: {code}")


@router.post("", status_code=status.HTTP_201_CREATED, response_model=LoanResponse)
def open_loan(
    request: OpenLoanRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """Record a disbursed loan"""
    loan = engine.open_loan(
        loan_number=request.loan_number,
        customer_id=request.customer_id,
        principal=request.principal,
        annual_interest_rate=request.annual_interest_rate,
        term_months=request.term_months,
        disbursement_date=request.disbursement_date,
        interest_convention=request.interest_convention,
        currency=_currency(request.currency),
        organisation_id=request.organisation_id
    )
    return _loan_response(loan)


@router.get("/{loan_id}", response_model=LoanResponse)
def get_loan(loan_id: str, engine: LoanEngine = Depends(get_engine)):
    """Get loan details"""
    return _loan_response(engine.loan_repository.get_by_id(loan_id))


@router.post("/{loan_id}/amounts-due")
def amounts_due(
    loan_id: str,
    request: AsOfRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """Penalties, interest and principal owed as of a date (the payoff quote)"""
    return engine.orchestrator.amounts_due(loan_id, request.as_of).to_dict()


@router.post("/{loan_id}/repayments", status_code=status.HTTP_201_CREATED)
def post_repayment(
    loan_id: str,
    request: RepaymentRequestModel,
    engine: LoanEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """Post a repayment against a loan"""
    outcome = engine.orchestrator.post_repayment(RepaymentRequest(
        loan_id=loan_id,
        amount=request.amount,
        payment_date=request.payment_date,
        payment_method=request.payment_method,
        reference=request.reference,
        fees_due=request.fees_due
    ))
    return {
        "repayment_id": outcome.repayment.id,
        "loan": _loan_response(outcome.loan).model_dump(),
        "allocation": outcome.allocation.to_dict(),
        "arrears_before": outcome.arrears_before.to_dict(),
        "arrears_after": outcome.arrears_after.to_dict(),
        "stage": outcome.stage_result.to_dict() if outcome.stage_result else None,
        "provision": outcome.provision_result.to_dict() if outcome.provision_result else None,
        "staging_error": outcome.staging_error,
        "attempts": outcome.attempts
    }


@router.get("/{loan_id}/repayments")
def list_repayments(loan_id: str, engine: LoanEngine = Depends(get_engine)):
    """Repayment history, oldest first"""
    engine.loan_repository.get_by_id(loan_id)
    return [record.to_dict() for record in engine.repayment_repository.list_for_loan(loan_id)]


@router.post("/{loan_id}/refresh-arrears", response_model=LoanResponse)
def refresh_arrears(
    loan_id: str,
    request: AsOfRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """Move the loan between ACTIVE and ARREARS to match its days overdue"""
    loan, _ = engine.orchestrator.refresh_arrears_status(loan_id, request.as_of)
    return _loan_response(loan)


@router.post("/{loan_id}/restage")
def restage(
    loan_id: str,
    request: RestageRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """Recompute IFRS 9 staging and provisioning for the loan"""
    stage_result, provision_result = engine.orchestrator.restage_loan(
        loan_id, request.as_of, request.base_pd, request.loss_given_default
    )
    return {"stage": stage_result.to_dict(), "provision": provision_result.to_dict()}


@router.get("/{loan_id}/staging-history")
def staging_history(
    loan_id: str,
    kind: Optional[str] = None,
    engine: LoanEngine = Depends(get_engine)
):
    """Appended staging and provisioning results, oldest first"""
    engine.loan_repository.get_by_id(loan_id)
    return [record.to_dict() for record in engine.staging_repository.history_for_loan(loan_id, kind)]


@router.post("/{loan_id}/write-off", response_model=LoanResponse)
def write_off(loan_id: str, engine: LoanEngine = Depends(get_engine)):
    """Write off a loan that is still being repaid"""
    return _loan_response(engine.orchestrator.write_off(loan_id))


@portfolio_router.post("/staging")
def stage_portfolio(
    request: PortfolioStagingRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """Re-stage the portfolio and summarise its risk position"""
    report = engine.portfolio_runner.run(request.as_of, request.loan_ids, request.organisation_id)
    return {
        "as_of": report.as_of.isoformat(),
        "staged": report.staged_count,
        "failures": report.failures,
        "summary": report.summary.to_dict()
    }
