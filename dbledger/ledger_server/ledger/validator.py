"""
Transaction validation for the ledger.

Rules are checked in order and the first failure wins:
- header: transaction id and postdate are present; text fields are strings
- splits_present: at least one split
- split_structure: each split names one currency, at least one account,
  string id/date/description, and an integer amount that fits in 64 bits
- balance: per currency, split amounts sum to zero

Invariants:
    - Validation never touches storage
    - Error messages name the rule and the split that failed
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from ..errors import ValidationError
from .types import Transaction


@dataclass(frozen=True)
class Violation:
    """A single failed rule."""

    rule: str
    message: str
    split_index: int | None = None
    currency: str | None = None


# SQLite INTEGER is a signed 64-bit value
MIN_AMOUNT = -(2**63)
MAX_AMOUNT = 2**63 - 1


def _is_integer(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def iter_violations(txn: Transaction, enforce_balance: bool = True) -> Iterator[Violation]:
    """Yield rule violations in check order.

    Balance is only checked once the structure of every split is valid.
    """
    if not isinstance(txn.id, str) or not txn.id:
        yield Violation("header", "Transaction id is required and must be a string")
    if not isinstance(txn.postdate, str) or not txn.postdate:
        yield Violation("header", "Transaction postdate is required and must be a string")
    if not isinstance(txn.description, str):
        yield Violation("header", "Transaction description must be a string")
    if txn.poster is not None and not isinstance(txn.poster, str):
        yield Violation("header", "Transaction poster must be a string")

    if not txn.splits:
        yield Violation("splits_present", "Transaction must have at least one split")
        return

    structurally_valid = True
    for i, split in enumerate(txn.splits):
        if not isinstance(split.currency, str) or not split.currency:
            structurally_valid = False
            yield Violation("split_structure", f"Split {i} must reference a currency", i)
        if not split.accounts:
            structurally_valid = False
            yield Violation("split_structure", f"Split {i} must reference at least one account", i)
        elif not all(isinstance(code, str) and code for code in split.accounts):
            structurally_valid = False
            yield Violation("split_structure", f"Split {i} has an empty account code", i)
        for name in ("id", "date", "description"):
            if not isinstance(getattr(split, name), str):
                structurally_valid = False
                yield Violation("split_structure", f"Split {i} {name} must be a string", i)
        if not _is_integer(split.amount):
            structurally_valid = False
            yield Violation(
                "split_structure",
                f"Split {i} amount must be an integer number of minor units, "
                f"got {type(split.amount).__name__}",
                i,
            )
        elif not MIN_AMOUNT <= split.amount <= MAX_AMOUNT:
            structurally_valid = False
            yield Violation(
                "split_structure",
                f"Split {i} amount {split.amount} is outside the 64-bit integer range",
                i,
            )

    if not enforce_balance or not structurally_valid:
        return

    totals: dict[str, int] = {}
    for split in txn.splits:
        totals[split.currency] = totals.get(split.currency, 0) + split.amount

    for currency, total in totals.items():
        if total != 0:
            yield Violation(
                "balance",
                f"Splits in {currency} do not balance: off by {total}",
                currency=currency,
            )


def validate_transaction(
    txn: Transaction, enforce_balance: bool = True
) -> tuple[bool, list[str]]:
    """Validate a transaction.

    Args:
        txn: Transaction to validate
        enforce_balance: Whether to require per-currency sums of zero

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = [v.message for v in iter_violations(txn, enforce_balance)]
    return len(errors) == 0, errors


def validate_or_raise(txn: Transaction, enforce_balance: bool = True) -> None:
    """Validate a transaction, raising on the first failed rule.

    Raises:
        ValidationError: If any rule fails
    """
    for violation in iter_violations(txn, enforce_balance):
        raise ValidationError(
            violation.message,
            rule=violation.rule,
            split_index=violation.split_index,
            currency=violation.currency,
        )
