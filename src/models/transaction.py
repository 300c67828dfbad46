"""
Transaction history model.

A read-only summary of one on-chain transaction, as shown in the activity
list. Direction is inferred from the sign of the fee payer's balance change.

Status values come straight from the chain's confirmation status:
- processed
- confirmed
- finalized
"""

from dataclasses import dataclass, asdict
from typing import Optional

TYPE_RECEIVED = "received"
TYPE_SENT = "sent"


@dataclass
class TransactionSummary:
    """One entry of the account's recent activity."""
    signature: str
    timestamp: Optional[int]   # Unix block time, None while pending
    type: str                  # received | sent
    amount: float              # Absolute balance change in SOL
    fee: float                 # Fee in SOL
    status: Optional[str]      # Confirmation status

    @property
    def is_pending(self) -> bool:
        return self.timestamp is None

    @classmethod
    def from_balances(
        cls,
        signature: str,
        timestamp: Optional[int],
        pre_balance: int,
        post_balance: int,
        fee: int,
        status: Optional[str],
        lamports_per_unit: int,
    ) -> "TransactionSummary":
        """Build a summary from the fee payer's pre/post lamport balances."""
        pre = pre_balance / lamports_per_unit
        post = post_balance / lamports_per_unit
        return cls(
            signature=signature,
            timestamp=timestamp,
            type=TYPE_RECEIVED if post > pre else TYPE_SENT,
            amount=abs(post - pre),
            fee=fee / lamports_per_unit,
            status=status,
        )

    def to_dict(self) -> dict:
        return asdict(self)
