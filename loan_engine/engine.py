"""
Loan engine container

Wires storage, repositories, locks, staging and the repayment orchestrator
together from a LoanEngineConfig.
"""

from decimal import Decimal
from typing import Optional

from .config import LoanEngineConfig, get_config
from .events import EventDispatcher
from .interest import DEFAULT_APR_GUESS, AprEstimate, calculate_apr
from .locks import LoanLockRegistry
from .loans import Loan, open_loan
from .portfolio import PortfolioStagingRunner
from .repayments import RepaymentOrchestrator
from .repositories import StorageLoanRepository, StorageRepaymentRepository, StorageStagingResultRepository
from .staging import CreditStagingEngine, StagingPolicy
from .storage import StorageInterface, create_storage


class LoanEngine:
    """Loan financial engine with all components initialized"""

    def __init__(self, config: Optional[LoanEngineConfig] = None,
                 storage: Optional[StorageInterface] = None, **orchestrator_options):
        self.config = config or get_config()
        self.storage = storage or create_storage(
            self.config.database_url, self.config.persistence_timeout_seconds
        )

        self.loan_repository = StorageLoanRepository(self.storage)
        self.repayment_repository = StorageRepaymentRepository(self.storage)
        self.staging_repository = StorageStagingResultRepository(self.storage)

        self.dispatcher = EventDispatcher()
        self.locks = LoanLockRegistry(self.config.persistence_timeout_seconds)
        self.staging_engine = CreditStagingEngine(StagingPolicy.from_config(self.config))

        options = dict(
            allocation_order=self.config.allocation_order,
            penalty_rate_per_month=self.config.penalty_rate_per_month,
            advance_due_date=self.config.advance_due_date_on_instalment,
            max_conflict_retries=self.config.max_conflict_retries,
            max_unavailable_retries=self.config.max_unavailable_retries,
            retry_backoff_seconds=self.config.retry_backoff_seconds,
        )
        options.update(orchestrator_options)
        self.orchestrator = RepaymentOrchestrator(
            self.loan_repository,
            self.repayment_repository,
            self.staging_repository,
            staging_engine=self.staging_engine,
            locks=self.locks,
            transaction=self.storage.atomic,
            dispatcher=self.dispatcher,
            **options
        )
        self.portfolio_runner = PortfolioStagingRunner(
            self.loan_repository,
            self.staging_repository,
            staging_engine=self.staging_engine,
            locks=self.locks,
            max_workers=self.config.batch_max_workers,
            par_threshold_days=self.config.par_threshold_days,
            transaction=self.storage.atomic,
            dispatcher=self.dispatcher
        )

    def open_loan(self, **kwargs) -> Loan:
        """Create and store a disbursed loan (see loans.open_loan)"""
        return self.loan_repository.add(open_loan(**kwargs))

    def calculate_apr(self, monthly_payment, principal, months: int) -> AprEstimate:
        """APR with the configured iteration cap and tolerance"""
        return calculate_apr(
            monthly_payment, principal, months,
            max_iterations=self.config.apr_max_iterations,
            tolerance=Decimal(self.config.apr_tolerance),
            initial_guess=DEFAULT_APR_GUESS
        )

    def close(self) -> None:
        self.storage.close()
