"""
Client-side reconciliation after redirect-back from checkout.

The verify endpoint says whether the webhook already credited the payment. If
it has not, the poller waits for whichever comes first: a balance increase on
the real-time feed, or a poll (verify / balance read) reporting it. The wait is
bounded; running out of attempts ends in PENDING, not failure, because the
credit is applied exactly once whenever the webhook lands.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

from app.core.logging import get_logger

log = get_logger(__name__)

VerifyFn = Callable[[], Awaitable[dict[str, Any]]]
BalanceFn = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]


class PollOutcome(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PollResult:
    outcome: PollOutcome
    attempts: int = 0
    status: str | None = None
    balance: Decimal | None = None
    signal: str | None = None  # verify, poll, balance, subscription


def _as_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _credited(result: dict[str, Any]) -> bool:
    return bool(result.get("success")) and bool(result.get("balanceUpdated"))


def _terminal(result: dict[str, Any]) -> bool:
    return not result.get("success") and bool(result.get("terminal"))


class ReconciliationPoller:
    def __init__(
        self,
        verify: VerifyFn,
        read_balance: BalanceFn | None = None,
        balance_updates: AsyncIterator[Any] | None = None,
        interval: float = 5.0,
        max_attempts: int = 24,
        sleep: SleepFn = asyncio.sleep,
        initial_balance: Decimal | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.verify = verify
        self.read_balance = read_balance
        self.balance_updates = balance_updates
        self.interval = interval
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.initial_balance = initial_balance
        self.attempts = 0

    async def run(self, cancel: asyncio.Event | None = None) -> PollResult:
        cancel = cancel or asyncio.Event()
        try:
            first = await self.verify()
        except Exception as e:
            if not getattr(e, "retryable", True):
                log.warning("reconciliation_verify_rejected", attempt=0, error=str(e))
                return PollResult(PollOutcome.FAILED, signal="verify")
            # Provider or network hiccup: not credited yet, fall through to waiting.
            log.warning("reconciliation_verify_error", attempt=0, error=str(e))
            first = {}
        if cancel.is_set():
            return PollResult(PollOutcome.CANCELLED)
        status = first.get("status")
        if _credited(first):
            return PollResult(PollOutcome.SUCCESS, status=status, signal="verify")
        if _terminal(first):
            return PollResult(PollOutcome.FAILED, status=status, signal="verify")

        baseline = self.initial_balance
        if baseline is None and self.read_balance is not None:
            try:
                baseline = _as_decimal(await self.read_balance())
            except Exception as e:
                if not getattr(e, "retryable", True):
                    raise
                log.warning("reconciliation_balance_error", attempt=0, error=str(e))
        log.info("reconciliation_pending", status=status, baseline=str(baseline))

        cancel_task = asyncio.create_task(cancel.wait())
        racers = {asyncio.create_task(self._poll(baseline))}
        if self.balance_updates is not None and baseline is not None:
            racers.add(asyncio.create_task(self._watch(baseline)))
        try:
            while racers:
                done, _ = await asyncio.wait(racers | {cancel_task}, return_when=asyncio.FIRST_COMPLETED)
                if cancel_task in done:
                    log.info("reconciliation_cancelled", attempts=self.attempts)
                    return PollResult(PollOutcome.CANCELLED, attempts=self.attempts, status=status)
                for task in done:
                    racers.discard(task)
                    result = task.result()
                    if result is not None:
                        log.info("reconciliation_done", outcome=result.outcome.value, signal=result.signal)
                        return result
            return PollResult(PollOutcome.PENDING, attempts=self.attempts, status=status)
        finally:
            pending = racers | {cancel_task}
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            aclose = getattr(self.balance_updates, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _poll(self, baseline: Decimal | None) -> PollResult:
        status = None
        for attempt in range(1, self.max_attempts + 1):
            await self.sleep(self.interval)
            self.attempts = attempt
            try:
                result = await self.verify()
            except Exception as e:
                if not getattr(e, "retryable", True):
                    log.warning("reconciliation_verify_rejected", attempt=attempt, error=str(e))
                    return PollResult(PollOutcome.FAILED, attempts=attempt, status=status, signal="poll")
                log.warning("reconciliation_verify_error", attempt=attempt, error=str(e))
                result = None
            if result is not None:
                status = result.get("status", status)
                if _credited(result):
                    return PollResult(PollOutcome.SUCCESS, attempts=attempt, status=status, signal="poll")
                if _terminal(result):
                    return PollResult(PollOutcome.FAILED, attempts=attempt, status=status, signal="poll")
            if baseline is not None and self.read_balance is not None:
                try:
                    balance = _as_decimal(await self.read_balance())
                except Exception as e:
                    log.warning("reconciliation_balance_error", attempt=attempt, error=str(e))
                    continue
                if balance > baseline:
                    return PollResult(
                        PollOutcome.SUCCESS, attempts=attempt, status=status, balance=balance, signal="balance"
                    )
        log.info("reconciliation_still_pending", attempts=self.max_attempts, status=status)
        return PollResult(PollOutcome.PENDING, attempts=self.max_attempts, status=status)

    async def _watch(self, baseline: Decimal) -> PollResult | None:
        """Real-time feed; None when it ends or breaks, leaving polling as the backup."""
        try:
            async for value in self.balance_updates:
                balance = _as_decimal(value)
                if balance > baseline:
                    return PollResult(
                        PollOutcome.SUCCESS, attempts=self.attempts, balance=balance, signal="subscription"
                    )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("reconciliation_subscription_failed", error=str(e))
        return None
