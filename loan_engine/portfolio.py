"""
Portfolio Staging Module

Batch recomputation of IFRS 9 staging and provisioning across loans, and the
portfolio summary built from it (total ECL, provisions, stage mix and
portfolio-at-risk).
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, ContextManager, Dict, Iterable, List, Optional
import logging

from .currency import ZERO, round_money
from .events import DomainEvent, EventDispatcher, EventPayload
from .locks import LoanLockRegistry
from .logging_config import log_action
from .repositories import LoanRepository, StagingResultRepository
from .staging import CreditStage, CreditStageResult, CreditStagingEngine, ProvisionClassification, ProvisionResult


logger = logging.getLogger("loan_engine.portfolio")

HUNDRED = Decimal('100')


@dataclass(frozen=True)
class LoanStagingOutcome:
    loan_id: str
    stage_result: CreditStageResult
    provision_result: ProvisionResult


@dataclass(frozen=True)
class PortfolioSummary:
    """Aggregate risk position of a set of staged loans"""
    loan_count: int
    total_outstanding: Decimal
    total_ecl: Decimal
    total_provision: Decimal
    stage_counts: Dict[str, int]
    classification_counts: Dict[str, int]
    amount_at_risk: Decimal
    portfolio_at_risk: Decimal  # percent of outstanding more than N days overdue
    par_threshold_days: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_count': self.loan_count,
            'total_outstanding': str(self.total_outstanding),
            'total_ecl': str(self.total_ecl),
            'total_provision': str(self.total_provision),
            'stage_counts': dict(self.stage_counts),
            'classification_counts': dict(self.classification_counts),
            'amount_at_risk': str(self.amount_at_risk),
            'portfolio_at_risk': str(self.portfolio_at_risk),
            'par_threshold_days': self.par_threshold_days
        }


@dataclass
class PortfolioRunReport:
    as_of: date
    outcomes: List[LoanStagingOutcome] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    summary: Optional[PortfolioSummary] = None

    @property
    def staged_count(self) -> int:
        return len(self.outcomes)


def summarize_portfolio(outcomes: Iterable[LoanStagingOutcome], par_threshold_days: int = 30) -> PortfolioSummary:
    """
    Aggregate staged loans into a portfolio summary

    PAR is the share of outstanding balance on loans more than
    `par_threshold_days` overdue, as a percentage rounded to 2 places.
    """
    outcomes = list(outcomes)
    stage_counts = {stage.value: 0 for stage in CreditStage}
    classification_counts = {c.value: 0 for c in ProvisionClassification}
    total_outstanding = total_ecl = total_provision = at_risk = ZERO

    for outcome in outcomes:
        balance = outcome.provision_result.outstanding_balance
        total_outstanding += balance
        total_ecl += outcome.stage_result.ecl_value
        total_provision += outcome.provision_result.provision_amount
        stage_counts[outcome.stage_result.stage.value] += 1
        classification_counts[outcome.provision_result.classification.value] += 1
        if outcome.stage_result.days_overdue > par_threshold_days:
            at_risk += balance

    par = round_money(at_risk / total_outstanding * HUNDRED) if total_outstanding > ZERO else ZERO
    return PortfolioSummary(
        loan_count=len(outcomes),
        total_outstanding=round_money(total_outstanding),
        total_ecl=round_money(total_ecl),
        total_provision=round_money(total_provision),
        stage_counts=stage_counts,
        classification_counts=classification_counts,
        amount_at_risk=round_money(at_risk),
        portfolio_at_risk=par,
        par_threshold_days=par_threshold_days
    )


class PortfolioStagingRunner:
    """
    Re-stages every loan that is being repaid

    Loans are processed on a thread pool. Each loan is staged under the same
    per-loan lock repayments take, so a batch never overlaps an in-flight
    repayment on that loan. One loan failing does not stop the batch.
    """

    def __init__(
        self,
        loan_repository: LoanRepository,
        staging_repository: StagingResultRepository,
        transaction: Callable[[], ContextManager],
        staging_engine: Optional[CreditStagingEngine] = None,
        locks: Optional[LoanLockRegistry] = None,
        max_workers: int = 4,
        par_threshold_days: int = 30,
        dispatcher: Optional[EventDispatcher] = None
    ):
        self.loan_repository = loan_repository
        self.staging_repository = staging_repository
        self.staging_engine = staging_engine or CreditStagingEngine()
        self.locks = locks or LoanLockRegistry()
        self.max_workers = max_workers
        self.par_threshold_days = par_threshold_days
        self.transaction = transaction
        self.dispatcher = dispatcher or EventDispatcher()

    def _stage_one(self, loan_id: str, as_of: date) -> Optional[LoanStagingOutcome]:
        with self.locks.hold(loan_id):
            loan = self.loan_repository.get_by_id(loan_id)
            if not loan.is_repaying:
                return None
            stage_result, provision_result = self.staging_engine.assess_loan(loan, as_of)
            with self.transaction():
                self._append(loan_id, stage_result, provision_result, as_of)
        return LoanStagingOutcome(loan_id, stage_result, provision_result)

    def _append(self, loan_id: str, stage_result: CreditStageResult,
                provision_result: ProvisionResult, as_of: date) -> None:
        self.staging_repository.append_stage(loan_id, stage_result, as_of)
        self.staging_repository.append_provision(loan_id, provision_result, as_of)

    def run(self, as_of: date, loan_ids: Optional[Iterable[str]] = None,
            organisation_id: Optional[str] = None) -> PortfolioRunReport:
        """
        Stage the given loans (all loans, or one organisation's, when omitted)

        Loans that are not ACTIVE or ARREARS are skipped.
        """
        ids = list(loan_ids) if loan_ids is not None else self.loan_repository.list_ids(organisation_id)
        report = PortfolioRunReport(as_of=as_of)
        log_action(logger, "info", f"Staging {len(ids)} loans as of {as_of.isoformat()}",
                   action="portfolio_staging", extra={'workers': self.max_workers})

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._stage_one, loan_id, as_of): loan_id for loan_id in ids}
            for future in as_completed(futures):
                loan_id = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    report.failures[loan_id] = str(e)
                    log_action(logger, "error", f"Staging failed: {e}", loan_id=loan_id,
                               action="portfolio_staging", exc_info=True)
                    continue
                if outcome is not None:
                    report.outcomes.append(outcome)

        report.outcomes.sort(key=lambda o: o.loan_id)
        report.summary = summarize_portfolio(report.outcomes, self.par_threshold_days)
        log_action(
            logger, "info",
            f"Portfolio staging finished: {report.staged_count} staged, {len(report.failures)} failed",
            action="portfolio_staging", extra=report.summary.to_dict()
        )
        self.dispatcher.publish(EventPayload(
            event_type=DomainEvent.PORTFOLIO_STAGED,
            entity_type="portfolio",
            entity_id=organisation_id or "all",
            data={'as_of': as_of.isoformat(), **report.summary.to_dict()}
        ))
        return report
