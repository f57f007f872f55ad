"""
Credit accounting hooks.

Billing itself lives elsewhere; the pipeline only needs to reserve credits at
start, commit them on success and refund them on failure. LoggingCreditLedger
is the default collaborator and records those calls in the log.
"""
import logging
import math

logger = logging.getLogger(__name__)

CREDIT_COSTS = {15: 1, 30: 2, 50: 2, 75: 3, 100: 4}


def credit_cost(playlist_size: int) -> int:
    """Credits charged for a playlist of the given size."""
    if playlist_size in CREDIT_COSTS:
        return CREDIT_COSTS[playlist_size]
    return max(1, math.ceil(playlist_size / 25))


class CreditLedger:
    """Interface to the external credit ledger."""

    def reserve(self, user_id: str, run_id: str, amount: int) -> None:
        raise NotImplementedError

    def commit(self, user_id: str, run_id: str, amount: int) -> None:
        raise NotImplementedError

    def refund(self, user_id: str, run_id: str, amount: int) -> None:
        raise NotImplementedError


class LoggingCreditLedger(CreditLedger):
    """Ledger that only logs; used when no billing backend is wired in."""

    def reserve(self, user_id: str, run_id: str, amount: int) -> None:
        logger.info(f"Reserved {amount} credit(s) for run {run_id} (user {user_id})")

    def commit(self, user_id: str, run_id: str, amount: int) -> None:
        logger.info(f"Committed {amount} credit(s) for run {run_id} (user {user_id})")

    def refund(self, user_id: str, run_id: str, amount: int) -> None:
        logger.info(f"Refunded {amount} credit(s) for run {run_id} (user {user_id})")
