"""
Credit Staging Module

IFRS 9 expected-credit-loss staging and central-bank loan provisioning.

Both ladders are driven by days overdue but are independent of each other:
the IFRS 9 stage scales a probability of default, the provisioning ladder
applies a flat percentage to the outstanding balance. Results are derived
snapshots; recomputing with the same inputs yields the same values.
"""

from decimal import Decimal
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple
from enum import Enum

from .arrears import DelinquencyBucket, bucket_for, classify
from .currency import ZERO, round_money, to_decimal
from .exceptions import InvalidArgumentError


ONE = Decimal('1')


class CreditStage(Enum):
    """IFRS 9 impairment stages"""
    STAGE_1 = "STAGE_1"  # Performing: 12-month ECL
    STAGE_2 = "STAGE_2"  # Significant increase in credit risk: lifetime ECL
    STAGE_3 = "STAGE_3"  # Credit-impaired: lifetime ECL


class ProvisionClassification(Enum):
    """Central-bank loan classification"""
    STANDARD = "Standard"
    WATCH = "Watch"
    SUBSTANDARD = "Substandard"
    DOUBTFUL = "Doubtful"
    LOSS = "Loss"


def _fraction(value: Any, field_name: str) -> Decimal:
    result = to_decimal(value, field_name)
    if result < ZERO or result > ONE:
        raise InvalidArgumentError(f"{field_name} must be between 0 and 1, got {result}")
    return result


def _days(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"days_overdue must be an integer, got {value!r}")
    if value < 0:
        raise InvalidArgumentError(f"days_overdue cannot be negative, got {value}")
    return value


@dataclass(frozen=True)
class StagingPolicy:
    """
    Stage thresholds, PD multipliers and default risk parameters

    Thresholds must ascend and multipliers must not decrease, which keeps
    ECL non-decreasing in days overdue for a fixed exposure.
    """
    stage_2_threshold_days: int = 30
    stage_3_threshold_days: int = 90
    stage_1_multiplier: Decimal = Decimal('1')
    stage_2_multiplier: Decimal = Decimal('1.5')
    stage_3_multiplier: Decimal = Decimal('2.5')
    default_probability_of_default: Decimal = Decimal('0.05')
    default_loss_given_default: Decimal = Decimal('0.45')

    def __post_init__(self):
        if not 0 <= self.stage_2_threshold_days < self.stage_3_threshold_days:
            raise InvalidArgumentError(
                "Stage thresholds must satisfy 0 <= stage 2 threshold < stage 3 threshold"
            )
        multipliers = [to_decimal(m, "stage multiplier") for m in
                       (self.stage_1_multiplier, self.stage_2_multiplier, self.stage_3_multiplier)]
        if multipliers[0] < ZERO or multipliers != sorted(multipliers):
            raise InvalidArgumentError("Stage PD multipliers must be non-negative and non-decreasing")
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, 'stage_1_multiplier', multipliers[0])
        object.__setattr__(self, 'stage_2_multiplier', multipliers[1])
        object.__setattr__(self, 'stage_3_multiplier', multipliers[2])
        object.__setattr__(self, 'default_probability_of_default',
                           _fraction(self.default_probability_of_default, "default_probability_of_default"))
        object.__setattr__(self, 'default_loss_given_default',
                           _fraction(self.default_loss_given_default, "default_loss_given_default"))

    @classmethod
    def from_config(cls, config) -> 'StagingPolicy':
        return cls(
            stage_2_threshold_days=config.stage_2_threshold_days,
            stage_3_threshold_days=config.stage_3_threshold_days,
            stage_1_multiplier=Decimal(config.stage_1_pd_multiplier),
            stage_2_multiplier=Decimal(config.stage_2_pd_multiplier),
            stage_3_multiplier=Decimal(config.stage_3_pd_multiplier),
            default_probability_of_default=Decimal(config.default_probability_of_default),
            default_loss_given_default=Decimal(config.default_loss_given_default)
        )

    def stage_for(self, days_overdue: int) -> Tuple[CreditStage, Decimal]:
        """Stage and PD multiplier for a days-overdue count"""
        if days_overdue > self.stage_3_threshold_days:
            return CreditStage.STAGE_3, self.stage_3_multiplier
        if days_overdue > self.stage_2_threshold_days:
            return CreditStage.STAGE_2, self.stage_2_multiplier
        return CreditStage.STAGE_1, self.stage_1_multiplier


@dataclass(frozen=True)
class ProvisioningTier:
    """One rung of the provisioning ladder; max_days None means unbounded"""
    max_days: Optional[int]
    classification: ProvisionClassification
    percentage: Decimal


@dataclass(frozen=True)
class ProvisioningLadder:
    tiers: Tuple[ProvisioningTier, ...]

    def __post_init__(self):
        if not self.tiers:
            raise InvalidArgumentError("Provisioning ladder needs at least one tier")
        if self.tiers[-1].max_days is not None:
            raise InvalidArgumentError("Last provisioning tier must be open-ended")
        bounds = [tier.max_days for tier in self.tiers[:-1]]
        if any(b is None for b in bounds) or bounds != sorted(set(bounds)):
            raise InvalidArgumentError("Provisioning tier bounds must be strictly ascending")
        percentages = [_fraction(tier.percentage, "provision percentage") for tier in self.tiers]
        if percentages != sorted(percentages):
            raise InvalidArgumentError("Provision percentages must be non-decreasing")

    def tier_for(self, days_overdue: int) -> ProvisioningTier:
        for tier in self.tiers:
            if tier.max_days is None or days_overdue <= tier.max_days:
                return tier
        return self.tiers[-1]


DEFAULT_STAGING_POLICY = StagingPolicy()

DEFAULT_PROVISIONING_LADDER = ProvisioningLadder(tiers=(
    ProvisioningTier(30, ProvisionClassification.STANDARD, Decimal('0.01')),
    ProvisioningTier(60, ProvisionClassification.WATCH, Decimal('0.05')),
    ProvisioningTier(90, ProvisionClassification.SUBSTANDARD, Decimal('0.10')),
    ProvisioningTier(180, ProvisionClassification.DOUBTFUL, Decimal('0.50')),
    ProvisioningTier(None, ProvisionClassification.LOSS, Decimal('1.00')),
))


@dataclass(frozen=True)
class CreditStageResult:
    """IFRS 9 staging snapshot; ecl_value is rounded to cents"""
    stage: CreditStage
    days_overdue: int
    bucket: DelinquencyBucket
    base_probability_of_default: Decimal
    probability_of_default: Decimal
    loss_given_default: Decimal
    exposure_at_default: Decimal
    ecl_value: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage': self.stage.value,
            'days_overdue': self.days_overdue,
            'bucket': self.bucket.value,
            'base_probability_of_default': str(self.base_probability_of_default),
            'probability_of_default': str(self.probability_of_default),
            'loss_given_default': str(self.loss_given_default),
            'exposure_at_default': str(self.exposure_at_default),
            'ecl_value': str(self.ecl_value)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreditStageResult':
        return cls(
            stage=CreditStage(data['stage']),
            days_overdue=int(data['days_overdue']),
            bucket=DelinquencyBucket(data['bucket']),
            base_probability_of_default=Decimal(data['base_probability_of_default']),
            probability_of_default=Decimal(data['probability_of_default']),
            loss_given_default=Decimal(data['loss_given_default']),
            exposure_at_default=Decimal(data['exposure_at_default']),
            ecl_value=Decimal(data['ecl_value'])
        )


@dataclass(frozen=True)
class ProvisionResult:
    """Provisioning snapshot; provision_amount is rounded to cents"""
    classification: ProvisionClassification
    days_overdue: int
    bucket: DelinquencyBucket
    outstanding_balance: Decimal
    provision_percentage: Decimal
    provision_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'classification': self.classification.value,
            'days_overdue': self.days_overdue,
            'bucket': self.bucket.value,
            'outstanding_balance': str(self.outstanding_balance),
            'provision_percentage': str(self.provision_percentage),
            'provision_amount': str(self.provision_amount)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProvisionResult':
        return cls(
            classification=ProvisionClassification(data['classification']),
            days_overdue=int(data['days_overdue']),
            bucket=DelinquencyBucket(data['bucket']),
            outstanding_balance=Decimal(data['outstanding_balance']),
            provision_percentage=Decimal(data['provision_percentage']),
            provision_amount=Decimal(data['provision_amount'])
        )


def stage(
    days_overdue: int,
    base_pd: Any = None,
    *,
    exposure_at_default: Any,
    loss_given_default: Any = None,
    policy: Optional[StagingPolicy] = None
) -> CreditStageResult:
    """
    Compute the IFRS 9 stage and expected credit loss

    ECL = min(base PD x stage multiplier, 1) x LGD x EAD

    Args:
        days_overdue: Whole days past due (>= 0)
        base_pd: Base probability of default; policy default when None
        exposure_at_default: Exposure, normally the outstanding balance
        loss_given_default: LGD; policy default when None
        policy: Thresholds and multipliers; reference policy when None

    Returns:
        CreditStageResult

    Raises:
        InvalidArgumentError: Negative days, PD/LGD outside [0, 1] or negative EAD
    """
    policy = policy or DEFAULT_STAGING_POLICY
    days = _days(days_overdue)
    pd = (policy.default_probability_of_default if base_pd is None
          else _fraction(base_pd, "base_pd"))
    lgd = (policy.default_loss_given_default if loss_given_default is None
           else _fraction(loss_given_default, "loss_given_default"))
    ead = to_decimal(exposure_at_default, "exposure_at_default")
    if ead < ZERO:
        raise InvalidArgumentError(f"exposure_at_default cannot be negative, got {ead}")

    credit_stage, multiplier = policy.stage_for(days)
    adjusted_pd = min(pd * multiplier, ONE)

    return CreditStageResult(
        stage=credit_stage,
        days_overdue=days,
        bucket=bucket_for(days),
        base_probability_of_default=pd,
        probability_of_default=adjusted_pd,
        loss_given_default=lgd,
        exposure_at_default=ead,
        ecl_value=round_money(adjusted_pd * lgd * ead)
    )


def provision_classification(
    days_overdue: int,
    outstanding_balance: Any,
    ladder: Optional[ProvisioningLadder] = None
) -> ProvisionResult:
    """
    Classify a loan on the provisioning ladder and size its provision

    Raises:
        InvalidArgumentError: Negative days or negative balance
    """
    ladder = ladder or DEFAULT_PROVISIONING_LADDER
    days = _days(days_overdue)
    balance = to_decimal(outstanding_balance, "outstanding_balance")
    if balance < ZERO:
        raise InvalidArgumentError(f"outstanding_balance cannot be negative, got {balance}")

    tier = ladder.tier_for(days)
    return ProvisionResult(
        classification=tier.classification,
        days_overdue=days,
        bucket=bucket_for(days),
        outstanding_balance=balance,
        provision_percentage=tier.percentage,
        provision_amount=round_money(balance * tier.percentage)
    )


class CreditStagingEngine:
    """Staging and provisioning bound to one organisation's policy"""

    def __init__(self, policy: Optional[StagingPolicy] = None,
                 ladder: Optional[ProvisioningLadder] = None):
        self.policy = policy or DEFAULT_STAGING_POLICY
        self.ladder = ladder or DEFAULT_PROVISIONING_LADDER

    def stage(self, days_overdue: int, base_pd: Any = None, *,
              exposure_at_default: Any, loss_given_default: Any = None) -> CreditStageResult:
        return stage(days_overdue, base_pd, exposure_at_default=exposure_at_default,
                     loss_given_default=loss_given_default, policy=self.policy)

    def provision(self, days_overdue: int, outstanding_balance: Any) -> ProvisionResult:
        return provision_classification(days_overdue, outstanding_balance, self.ladder)

    def assess_loan(self, loan, as_of: date, base_pd: Any = None,
                    loss_given_default: Any = None) -> Tuple[CreditStageResult, ProvisionResult]:
        """Stage and provision a loan with EAD = its outstanding balance"""
        arrears = classify(loan.next_payment_date, as_of, loan.status)
        return (
            self.stage(arrears.days_overdue, base_pd,
                       exposure_at_default=loan.outstanding_balance,
                       loss_given_default=loss_given_default),
            self.provision(arrears.days_overdue, loan.outstanding_balance)
        )
