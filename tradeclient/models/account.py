from pydantic import BaseModel
from enum import Enum


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PASSED = "PASSED"
    FAILED = "FAILED"


class ChallengeRules(BaseModel):
    max_daily_drawdown_percent: float | None = None
    max_overall_drawdown_percent: float | None = None
    profit_target_phase1_percent: float | None = None
    stop_loss_mandatory: bool = False


class Challenge(BaseModel):
    id: str = ""
    name: str = "Challenge"
    steps_count: int = 2
    rules: ChallengeRules = ChallengeRules()


class Account(BaseModel):
    """Regular live trading account."""
    id: str  # backend _id, used in every /trade/* path
    account_id: str = ""  # human-facing account number
    balance: float = 0.0
    credit: float = 0.0
    leverage: str | None = None
    account_type: str | None = None
    account_type_leverage: str | None = None  # accountTypeId.leverage when populated


class ChallengeAccount(BaseModel):
    """Funded-evaluation account subject to drawdown / profit-target rules."""
    id: str
    account_id: str = ""
    challenge: Challenge = Challenge()
    current_step: int = 1
    status: AccountStatus = AccountStatus.ACTIVE
    balance: float = 0.0
    credit: float = 0.0
    leverage: str | None = None
    current_balance: float | None = None
    current_equity: float | None = None
    initial_balance: float | None = None
    phase_start_balance: float | None = None
    day_start_equity: float | None = None
    lowest_equity_overall: float | None = None
    max_daily_drawdown_percent: float | None = None
    max_overall_drawdown_percent: float | None = None
    fail_reason: str | None = None

    @property
    def rules(self) -> ChallengeRules:
        return self.challenge.rules


class AccountSummary(BaseModel):
    balance: float = 0.0
    equity: float = 0.0
    credit: float = 0.0
    free_margin: float = 0.0
    used_margin: float = 0.0
    floating_pnl: float = 0.0


class ActiveAccount(BaseModel):
    """The single account (regular xor challenge) currently being mirrored."""
    account: Account | ChallengeAccount

    @property
    def id(self) -> str:
        return self.account.id

    @property
    def is_challenge(self) -> bool:
        return isinstance(self.account, ChallengeAccount)

    @property
    def key(self) -> tuple[bool, str]:
        return (self.is_challenge, self.account.id)
