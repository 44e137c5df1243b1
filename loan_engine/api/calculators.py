"""
Calculator endpoints

Stateless wrappers over the interest, allocation, arrears and staging
functions.
"""

from fastapi import APIRouter, Depends

from .dependencies import get_engine
from .schemas import (
    AllocationRequest, AprRequest, AprResponse, ArrearsRequest, CostComparisonRequest,
    ProvisioningRequest, ScheduleRequest, StagingRequest
)
from ..allocation import allocate
from ..arrears import classify
from ..engine import LoanEngine
from ..interest import compare_loan_costs, generate_schedule, parse_convention


router = APIRouter()


@router.post("/schedule")
async def amortization_schedule(request: ScheduleRequest):
    """Generate an amortization schedule"""
    schedule = generate_schedule(
        request.principal,
        request.annual_rate,
        request.term_months,
        request.start_date,
        parse_convention(request.convention)
    )
    return schedule.to_dict()


@router.post("/apr", response_model=AprResponse)
async def annual_percentage_rate(
    request: AprRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """Solve for the APR implied by a level monthly payment"""
    estimate = engine.calculate_apr(request.monthly_payment, request.principal, request.term_months)
    return AprResponse(apr=str(estimate.apr), iterations=estimate.iterations, converged=estimate.converged)


@router.post("/cost-comparison")
async def cost_comparison(request: CostComparisonRequest):
    """Total interest and cost of the same loan under every convention"""
    costs = compare_loan_costs(request.principal, request.annual_rate, request.term_months)
    return {
        convention.value: {
            "total_interest": str(summary.total_interest),
            "total_cost": str(summary.total_cost),
            "monthly_payment": str(summary.monthly_payment)
        }
        for convention, summary in costs.items()
    }


@router.post("/allocation")
async def allocate_payment(
    request: AllocationRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """Split a payment across penalties, fees, interest and principal"""
    order = request.order if request.order is not None else engine.orchestrator.allocation_order
    allocation = allocate(
        request.amount,
        request.penalties_due,
        request.fees_due,
        request.interest_due,
        request.principal_due,
        order=order
    )
    return allocation.to_dict()


@router.post("/arrears")
async def arrears_classification(request: ArrearsRequest):
    """Days overdue and delinquency bucket"""
    return classify(request.due_date, request.as_of).to_dict()


@router.post("/staging")
async def credit_stage(
    request: StagingRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """IFRS 9 stage and expected credit loss"""
    result = engine.staging_engine.stage(
        request.days_overdue,
        request.base_pd,
        exposure_at_default=request.exposure_at_default,
        loss_given_default=request.loss_given_default
    )
    return result.to_dict()


@router.post("/provisioning")
async def provisioning(
    request: ProvisioningRequest,
    engine: LoanEngine = Depends(get_engine)
):
    """Central-bank provisioning classification"""
    return engine.staging_engine.provision(request.days_overdue, request.outstanding_balance).to_dict()
