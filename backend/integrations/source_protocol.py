"""Source runner protocol definitions.

This module defines the interface every position source (wallet balance
scanners, lending-protocol readers) implements to take part in a snapshot
refresh. Sources persist their own rows through ``SnapshotRepository``
and report counts back to the orchestrator.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.orm import Session


@dataclass
class WalletInput:
    """A wallet handed to a source. Detached from the ORM session."""

    id: str
    address: str
    type: str  # "EVM" | "SOLANA"


@dataclass
class SourceRunInput:
    """Everything a source needs to read positions for one snapshot."""

    snapshot_id: str
    wallets: list[WalletInput] = field(default_factory=list)


@dataclass
class SourceResult:
    """What a source reports after persisting its positions."""

    positions_asset_count: int = 0
    positions_liability_count: int = 0
    meta: dict[str, Any] = field(default_factory=dict)  # Source-specific diagnostics


class SourceRunner(Protocol):
    """Protocol for position sources.

    Implementations read balances or lending positions for the given
    wallets and write them with ``SnapshotRepository``. They either return
    a SourceResult or raise; the caller rolls back the session on error.
    """

    @property
    def source_key(self) -> str:
        """Return the source key (e.g., 'wallet_evm_balances')."""
        ...

    def run(self, db: Session, source_input: SourceRunInput) -> SourceResult:
        """Read and persist positions for ``source_input.wallets``."""
        ...
