"""Data models shared by the registry, the codec, the builders and analytics."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..utils.amounts import TokenAmount
from ..utils.constants import NATIVE_SOL_MINT


class InstructionFamily(str, Enum):
    """The two historically incompatible program generations.

    Versions 4 and 5 share the V4 instruction set and account layouts; every
    other version uses V3.
    """

    V3 = "v3"
    V4 = "v4"

    @classmethod
    def for_version(cls, version: int) -> "InstructionFamily":
        return cls.V4 if version in (4, 5) else cls.V3


class YieldStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


@dataclass(frozen=True, slots=True)
class TokenInfo:
    """Static description of an SPL token."""

    symbol: str
    mint: str
    decimals: int
    name: str = ""

    @property
    def is_native(self) -> bool:
        return self.mint == NATIVE_SOL_MINT


@dataclass(frozen=True, slots=True)
class Pool:
    """An AMM pool descriptor with its latest balance snapshots."""

    name: str
    version: int
    program_id: str
    amm_id: str
    amm_authority: str
    amm_open_orders: str
    lp: TokenInfo
    coin: TokenInfo
    pc: TokenInfo
    pool_coin_token_account: str
    pool_pc_token_account: str
    pool_withdraw_queue: str
    pool_temp_lp_token_account: str
    serum_program_id: str
    serum_market: str
    serum_coin_vault_account: str
    serum_pc_vault_account: str
    serum_vault_signer: str
    amm_target_orders: Optional[str] = None
    amm_quantities: Optional[str] = None
    coin_balance: Optional[TokenAmount] = None
    pc_balance: Optional[TokenAmount] = None
    lp_total_supply: Optional[TokenAmount] = None

    @property
    def family(self) -> InstructionFamily:
        return InstructionFamily.for_version(self.version)

    def with_snapshots(
        self,
        *,
        coin_balance: TokenAmount,
        pc_balance: TokenAmount,
        lp_total_supply: TokenAmount,
    ) -> "Pool":
        return dataclasses.replace(
            self,
            coin_balance=coin_balance,
            pc_balance=pc_balance,
            lp_total_supply=lp_total_supply,
        )

    def without_snapshots(self) -> "Pool":
        return dataclasses.replace(self, coin_balance=None, pc_balance=None, lp_total_supply=None)


@dataclass(frozen=True, slots=True)
class Farm:
    """A yield farm descriptor."""

    name: str
    version: int
    program_id: str
    pool_id: str
    pool_authority: str
    lp: TokenInfo
    reward: TokenInfo
    pool_lp_token_account: str
    pool_reward_token_account: str
    fusion: bool = False
    reward_b: Optional[TokenInfo] = None
    pool_reward_token_account_b: Optional[str] = None

    @property
    def family(self) -> InstructionFamily:
        return InstructionFamily.for_version(self.version)


@dataclass(frozen=True, slots=True)
class StakeAccountInfo:
    """Decoded farm state account.

    V3-only fields (fee owner/fees) and V4-only fields (second reward stream)
    are ``None`` for the other family.
    """

    address: str
    family: InstructionFamily
    state: int
    nonce: int
    pool_lp_token_account: str
    pool_reward_token_account: str
    total_reward: int
    reward_per_share: int
    reward_per_block: int
    last_block: int
    owner: str
    fee_owner: Optional[str] = None
    fee_y: Optional[int] = None
    fee_x: Optional[int] = None
    option: Optional[int] = None
    pool_reward_token_account_b: Optional[str] = None
    total_reward_b: Optional[int] = None
    reward_per_share_b: Optional[int] = None
    reward_b_per_block: Optional[int] = None
    deposited_lp: Optional[int] = None

    def with_deposited_lp(self, raw_amount: int) -> "StakeAccountInfo":
        return dataclasses.replace(self, deposited_lp=raw_amount)


@dataclass(frozen=True, slots=True)
class UserStakeInfo:
    """Decoded per-owner stake record of a farm."""

    address: str
    family: InstructionFamily
    state: int
    pool_id: str
    staker_owner: str
    deposit_balance: int
    reward_debt: int
    reward_debt_b: Optional[int] = None


@dataclass(frozen=True, slots=True)
class RawAccount:
    """An account as returned by the RPC node, before decoding."""

    address: str
    owner: str
    data: bytes
    lamports: int = 0


@dataclass(frozen=True, slots=True)
class TokenAccountBalance:
    """An owner's token account for one mint."""

    address: str
    mint: str
    amount: TokenAmount


@dataclass(frozen=True, slots=True)
class PoolMarketData:
    """Optional market figures supplied by the caller per LP mint."""

    fee_apy: Optional[float] = None
    tvl: Optional[float] = None


@dataclass(frozen=True, slots=True)
class PoolYieldRecord:
    """Derived yield figures of one farm."""

    name: str
    farm_address: str
    pool_version: int
    farm_version: int
    reward_symbol: str
    reward_price: float
    reward_value_per_year: float
    liquidity_value: float
    apr: float
    apr_total: float
    final_apr: float
    status: YieldStatus
    dual_yield: bool
    reward_b_symbol: Optional[str] = None
    reward_b_price: Optional[float] = None
    reward_b_value_per_year: Optional[float] = None
    apr_b: Optional[float] = None
    fee_apy: Optional[float] = None
    tvl: Optional[float] = None


@dataclass(frozen=True, slots=True)
class RecordFailure:
    """A record of a batch that could not be evaluated."""

    address: str
    kind: str
    detail: str


@dataclass(frozen=True, slots=True)
class FarmStateBatch:
    """Decoded farm states plus the accounts that failed to load."""

    states: Tuple[StakeAccountInfo, ...] = ()
    failures: Tuple[RecordFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class PoolYieldReport:
    """Classified outcome of a yield batch."""

    active: Tuple[PoolYieldRecord, ...] = field(default_factory=tuple)
    ended: Tuple[PoolYieldRecord, ...] = field(default_factory=tuple)
    failures: Tuple[RecordFailure, ...] = field(default_factory=tuple)

    def by_status(self, status: YieldStatus) -> Tuple[PoolYieldRecord, ...]:
        return self.active if status is YieldStatus.ACTIVE else self.ended


__all__ = [
    "Farm",
    "FarmStateBatch",
    "InstructionFamily",
    "Pool",
    "PoolMarketData",
    "PoolYieldRecord",
    "PoolYieldReport",
    "RawAccount",
    "RecordFailure",
    "StakeAccountInfo",
    "TokenAccountBalance",
    "TokenInfo",
    "UserStakeInfo",
    "YieldStatus",
]
