"""
Repository Module

Persistence contracts the engine depends on, with implementations backed by
a StorageInterface. Loans are versioned (optimistic concurrency); repayment
and staging histories are append-only.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union
import uuid
import logging

from .exceptions import ConflictError, NotFoundError
from .loans import Loan, RepaymentRecord
from .staging import CreditStageResult, ProvisionResult
from .storage import StorageInterface, utc_now


logger = logging.getLogger("loan_engine.repositories")


class LoanRepository(ABC):
    """Loan persistence contract"""

    @abstractmethod
    def get_by_id(self, loan_id: str) -> Loan:
        """Load a loan; NotFoundError when it does not exist"""
        pass

    @abstractmethod
    def add(self, loan: Loan) -> Loan:
        """Store a new loan; ConflictError when the id is taken"""
        pass

    @abstractmethod
    def save(self, loan: Loan, expected_version: int) -> Loan:
        """
        Replace a stored loan if its version still equals `expected_version`

        Returns the loan carrying its new version.

        Raises:
            NotFoundError: Loan was never added
            ConflictError: Stored version differs from expected_version
        """
        pass

    @abstractmethod
    def list_ids(self, organisation_id: Optional[str] = None) -> List[str]:
        pass


class RepaymentRepository(ABC):
    """Append-only repayment history"""

    @abstractmethod
    def append(self, record: RepaymentRecord) -> RepaymentRecord:
        pass

    @abstractmethod
    def list_for_loan(self, loan_id: str) -> List[RepaymentRecord]:
        pass


STAGE_KIND = "stage"
PROVISION_KIND = "provision"


@dataclass(frozen=True)
class StagingRecord:
    """A persisted staging or provisioning result for one loan"""
    id: str
    loan_id: str
    kind: str  # STAGE_KIND or PROVISION_KIND
    as_of: date
    recorded_at: datetime
    result: Union[CreditStageResult, ProvisionResult]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'kind': self.kind,
            'as_of': self.as_of.isoformat(),
            'recorded_at': self.recorded_at.isoformat(),
            'result': self.result.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StagingRecord':
        result_type = CreditStageResult if data['kind'] == STAGE_KIND else ProvisionResult
        return cls(
            id=data['id'],
            loan_id=data['loan_id'],
            kind=data['kind'],
            as_of=date.fromisoformat(data['as_of']),
            recorded_at=datetime.fromisoformat(data['recorded_at']),
            result=result_type.from_dict(data['result'])
        )


class StagingResultRepository(ABC):
    """Append-only staging and provisioning history"""

    @abstractmethod
    def append_stage(self, loan_id: str, result: CreditStageResult, as_of: date) -> StagingRecord:
        pass

    @abstractmethod
    def append_provision(self, loan_id: str, result: ProvisionResult, as_of: date) -> StagingRecord:
        pass

    @abstractmethod
    def history_for_loan(self, loan_id: str, kind: Optional[str] = None) -> List[StagingRecord]:
        """Records for a loan in the order they were appended"""
        pass

    def latest_stage(self, loan_id: str) -> Optional[StagingRecord]:
        history = self.history_for_loan(loan_id, STAGE_KIND)
        return history[-1] if history else None


class StorageLoanRepository(LoanRepository):
    """LoanRepository over a StorageInterface table"""

    TABLE = "loans"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def get_by_id(self, loan_id: str) -> Loan:
        data = self.storage.load(self.TABLE, loan_id)
        if data is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return Loan.from_dict(data)

    def add(self, loan: Loan) -> Loan:
        self.storage.insert(self.TABLE, loan.id, loan.to_dict())
        logger.info(f"Added loan {loan.id} ({loan.loan_number})")
        return loan

    def save(self, loan: Loan, expected_version: int) -> Loan:
        # The version check and the write must not interleave with another save
        with self.storage.atomic():
            current = self.storage.load(self.TABLE, loan.id)
            if current is None:
                raise NotFoundError(f"Loan {loan.id} not found")
            stored_version = int(current.get('version', 0))
            if stored_version != expected_version:
                raise ConflictError(
                    f"Loan {loan.id} was modified concurrently "
                    f"(expected version {expected_version}, found {stored_version})"
                )
            saved = replace(loan, version=expected_version + 1)
            self.storage.save(self.TABLE, saved.id, saved.to_dict())
            return saved

    def list_ids(self, organisation_id: Optional[str] = None) -> List[str]:
        if organisation_id is None:
            records = self.storage.load_all(self.TABLE)
        else:
            records = self.storage.find(self.TABLE, {'organisation_id': organisation_id})
        return [record['id'] for record in records]


class StorageRepaymentRepository(RepaymentRepository):
    TABLE = "repayments"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def append(self, record: RepaymentRecord) -> RepaymentRecord:
        self.storage.insert(self.TABLE, record.id, record.to_dict())
        return record

    def list_for_loan(self, loan_id: str) -> List[RepaymentRecord]:
        return [RepaymentRecord.from_dict(data)
                for data in self.storage.find(self.TABLE, {'loan_id': loan_id})]


class StorageStagingResultRepository(StagingResultRepository):
    TABLE = "staging_results"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def _append(self, loan_id: str, kind: str, result, as_of: date) -> StagingRecord:
        record = StagingRecord(
            id=str(uuid.uuid4()),
            loan_id=loan_id,
            kind=kind,
            as_of=as_of,
            recorded_at=utc_now(),
            result=result
        )
        self.storage.insert(self.TABLE, record.id, record.to_dict())
        return record

    def append_stage(self, loan_id: str, result: CreditStageResult, as_of: date) -> StagingRecord:
        return self._append(loan_id, STAGE_KIND, result, as_of)

    def append_provision(self, loan_id: str, result: ProvisionResult, as_of: date) -> StagingRecord:
        return self._append(loan_id, PROVISION_KIND, result, as_of)

    def history_for_loan(self, loan_id: str, kind: Optional[str] = None) -> List[StagingRecord]:
        filters = {'loan_id': loan_id}
        if kind is not None:
            filters['kind'] = kind
        return [StagingRecord.from_dict(data) for data in self.storage.find(self.TABLE, filters)]
