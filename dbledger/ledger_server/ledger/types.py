"""
Data model for the ledger.

Users, currencies and accounts are append-only reference data keyed by
their natural keys. A Transaction owns an ordered list of Splits; each
split moves a signed integer amount of one currency through one or more
accounts.

Amounts are expressed in the currency's smallest unit (minor units), so
a USD split of 100 with 2 decimals is one dollar.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class User:
    """A transaction poster.

    Attributes:
        user_id: Surrogate key assigned by the store
        username: Natural key
    """

    user_id: int
    username: str


@dataclass(frozen=True)
class Currency:
    """A currency and its decimal precision."""

    name: str
    decimals: int


@dataclass(frozen=True)
class Account:
    """An account identified by its code.

    Attributes:
        code: Natural key (stored as account_id)
        name: Display name
        tags: Tags attached to the account, sorted
    """

    code: str
    name: str
    tags: tuple[str, ...] = ()


@dataclass
class Split:
    """One line item of a transaction.

    Attributes:
        id: Split identifier (generated on commit when empty)
        date: Split date (defaults to the transaction postdate)
        description: Free text
        currency: Currency name
        accounts: Account codes the amount moves through
        amount: Signed amount in minor units
        currency_decimals: Precision to use if the currency is new
    """

    currency: str
    accounts: list[str]
    amount: Any
    id: str = ""
    date: str = ""
    description: str = ""
    currency_decimals: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Split:
        if not isinstance(data, dict):
            raise ValueError(f"split must be an object, got {type(data).__name__}")

        accounts = data.get("accounts", [])
        if isinstance(accounts, str):
            accounts = [accounts]
        if not isinstance(accounts, list):
            raise ValueError("split accounts must be a list of account codes")

        decimals = data.get("currency_decimals")
        return cls(
            id=data.get("id") or "",
            date=data.get("date") or "",
            description=data.get("description") or "",
            currency=data.get("currency") or "",
            accounts=list(accounts),
            amount=data.get("amount"),
            currency_decimals=int(decimals) if decimals is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "description": self.description,
            "currency": self.currency,
            "accounts": list(self.accounts),
            "amount": self.amount,
        }


@dataclass
class Transaction:
    """A set of splits posted together.

    Example:
        {
            "id": "T1",
            "postdate": "2024-01-01",
            "description": "Owner contribution",
            "poster": "MainUser",
            "splits": [
                {"currency": "USD", "accounts": ["1000"], "amount": 100},
                {"currency": "USD", "accounts": ["2000"], "amount": -100}
            ]
        }
    """

    id: str
    postdate: str
    description: str = ""
    splits: list[Split] = field(default_factory=list)
    poster: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        """Create from a decoded request payload.

        Raises:
            ValueError: If the payload is not shaped like a transaction
        """
        if not isinstance(data, dict):
            raise ValueError(f"transaction must be an object, got {type(data).__name__}")

        splits = data.get("splits", [])
        if not isinstance(splits, list):
            raise ValueError("splits must be a list")

        return cls(
            id=data.get("id") or "",
            postdate=data.get("postdate") or "",
            description=data.get("description") or "",
            splits=[Split.from_dict(s) for s in splits],
            poster=data.get("poster") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "postdate": self.postdate,
            "description": self.description,
            "poster": self.poster,
            "splits": [s.to_dict() for s in self.splits],
        }

    def currency_names(self) -> list[str]:
        """Distinct currencies in order of first appearance."""
        return list(dict.fromkeys(s.currency for s in self.splits))

    def account_codes(self) -> list[str]:
        """Distinct account codes in order of first appearance."""
        return list(dict.fromkeys(code for s in self.splits for code in s.accounts))


@dataclass
class CommitResult:
    """Outcome of a successful commit.

    Attributes:
        transaction_id: Committed transaction identifier
        split_ids: Identifiers of the persisted splits, in order
        created_accounts: Account codes created by this commit
        created_currencies: Currency names created by this commit
    """

    transaction_id: str
    split_ids: list[str]
    created_accounts: list[str] = field(default_factory=list)
    created_currencies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "split_ids": list(self.split_ids),
            "created_accounts": list(self.created_accounts),
            "created_currencies": list(self.created_currencies),
        }
