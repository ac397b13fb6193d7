"""Pool arithmetic for the credit ledger, free of any storage concerns."""

from dataclasses import dataclass, replace
from datetime import date

from src.core.enums import CreditPool


@dataclass(frozen=True)
class Draw:
    """Credits taken from (or returned to) each pool."""

    bonus: int = 0
    free: int = 0
    paid: int = 0

    @property
    def total(self) -> int:
        return self.bonus + self.free + self.paid


@dataclass(frozen=True)
class BalanceState:
    """Plain copy of one ``credit_balances`` row."""

    identity_key: str
    free_used_today: int
    free_reset_date: date
    bonus_credits: int
    paid_credits: int
    version: int

    def free_remaining(self, free_daily: int) -> int:
        return max(free_daily - self.free_used_today, 0)

    def total(self, free_daily: int) -> int:
        return self.bonus_credits + self.paid_credits + self.free_remaining(free_daily)

    def pool(self, pool: CreditPool, free_daily: int) -> int:
        if pool == CreditPool.BONUS:
            return self.bonus_credits
        if pool == CreditPool.FREE:
            return self.free_remaining(free_daily)
        return self.paid_credits

    def rolled_over(self, today: date) -> "BalanceState":
        """The state with the free pool reset, if its day has passed."""
        if self.free_reset_date >= today:
            return self
        return replace(self, free_used_today=0, free_reset_date=today)

    def withdraw(self, draw: Draw) -> "BalanceState":
        return replace(
            self,
            bonus_credits=self.bonus_credits - draw.bonus,
            free_used_today=self.free_used_today + draw.free,
            paid_credits=self.paid_credits - draw.paid,
        )

    def deposit(self, draw: Draw) -> "BalanceState":
        return replace(
            self,
            bonus_credits=self.bonus_credits + draw.bonus,
            free_used_today=max(self.free_used_today - draw.free, 0),
            paid_credits=self.paid_credits + draw.paid,
        )


def plan_draw(
    state: BalanceState,
    amount: int,
    priority: list[CreditPool],
    free_daily: int,
) -> Draw | None:
    """
    Split ``amount`` across pools in priority order.

    Returns None when the pools together cannot cover it; a partial draw is
    never produced.
    """
    if state.total(free_daily) < amount:
        return None

    taken: dict[str, int] = {}
    left = amount
    for pool in priority:
        take = min(left, state.pool(pool, free_daily))
        taken[pool.value] = take
        left -= take
    return Draw(**taken)
