#data_models.py

import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"


@dataclass(frozen=True)
class ChainDescriptor:
    """Static description of one supported network. Identity key is `chain_id`."""
    chain_id: int
    name: str
    rpc_url: str
    native_token: str = NATIVE_TOKEN
    dex_aggregator: str = ""
    is_testnet: bool = False
    block_time_s: int = 12

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainDescriptor":
        return cls(
            chain_id=int(data['chain_id']),
            name=str(data['name']),
            rpc_url=str(data.get('rpc_url') or ""),
            native_token=str(data.get('native_token', NATIVE_TOKEN)),
            dex_aggregator=str(data.get('dex_aggregator', "")),
            is_testnet=bool(data.get('is_testnet', False)),
            block_time_s=int(data.get('block_time_s', 12)),
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class PortfolioSnapshot:
    """
    Balances of one address across all registered chains.

    balances maps chain id -> token -> raw integer balance. `confirmed_at`
    records when each chain's balance was last read successfully, so a chain
    that failed its latest refresh is visible as stale instead of zero.
    `updated_at` only moves when at least one chain answered a refresh;
    `attempted_at` moves on every refresh.
    """
    address: str
    balances: Dict[int, Dict[str, int]] = field(default_factory=dict)
    total_value: int = 0
    updated_at: Optional[float] = None
    confirmed_at: Dict[int, Optional[float]] = field(default_factory=dict)
    attempted_at: Optional[float] = None

    def balance_of(self, chain_id: int, token: str) -> int:
        return self.balances.get(chain_id, {}).get(token, 0)

    def total_balance(self, token: str) -> int:
        return sum(chain_balances.get(token, 0) for chain_balances in self.balances.values())

    def age(self, now: Optional[float] = None) -> Optional[float]:
        if self.updated_at is None:
            return None
        return (now if now is not None else time.time()) - self.updated_at

    def stale_chains(self) -> Dict[int, Optional[float]]:
        """Chains whose balance was not confirmed by the latest refresh. None means never confirmed."""
        return {
            cid: ts for cid, ts in self.confirmed_at.items()
            if ts is None or (self.attempted_at is not None and ts < self.attempted_at)
        }

    def to_dict(self, now: Optional[float] = None):
        return {
            "address": self.address,
            # JSON object keys must be strings; big ints are sent as strings too
            "balances": {
                str(cid): {token: str(amount) for token, amount in tokens.items()}
                for cid, tokens in self.balances.items()
            },
            "total_value": str(self.total_value),
            "updated_at": self.updated_at,
            "attempted_at": self.attempted_at,
            "age_s": self.age(now),
            "stale_chains": {str(cid): ts for cid, ts in self.stale_chains().items()},
        }


@dataclass(frozen=True)
class RefreshWarning:
    chain_id: int
    message: str


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """A price gap for a chain's native asset between two chains, in whole percent."""
    source_chain: int
    dest_chain: int
    token: str
    price_source: int
    price_dest: int
    profit_pct: int

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class SwapQuote:
    """Aggregator answer: price, the contract to call and the call data."""
    price: str
    to: str
    data: str
    is_fallback: bool = False


@dataclass
class ExecutionRecord:
    """A dataclass for structured strategy execution journal entries."""
    strategy_id: int
    strategy_type: str
    chain_id: int
    token_in: str
    token_out: str
    amount: int
    status: str
    tx_hash: str = ""
    timestamp: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self):
        return asdict(self)
