"""Account fetching and snapshot loading via Solana RPC."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol, Sequence

from cachetools import TTLCache
from construct import ConstructError
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import MemcmpOpts, TokenAccountOpts
from solders.pubkey import Pubkey

from ..config.settings import RPCConfig, get_app_config
from ..datalake.schemas import (
    Farm,
    FarmStateBatch,
    Pool,
    RawAccount,
    RecordFailure,
    StakeAccountInfo,
    TokenAccountBalance,
    UserStakeInfo,
)
from ..errors import DecodeError, FarmKitError, RpcError
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.amounts import TokenAmount
from ..utils.constants import MAX_MULTIPLE_ACCOUNTS
from .account_codec import AccountLayoutCodec, user_stake_layout_size
from .layouts import MINT_LAYOUT, TOKEN_ACCOUNT_LAYOUT, USER_STAKE_OWNER_OFFSET


class AccountFetcher(Protocol):
    """Read-only view of chain state consumed by the builders and loaders."""

    def get_multiple_accounts(self, addresses: Sequence[str]) -> List[Optional[RawAccount]]:
        """Return accounts in request order, ``None`` for missing ones."""

    def find_token_account(self, owner: str, mint: str) -> Optional[TokenAccountBalance]:
        """Return the owner's token account for ``mint`` if one exists."""

    def get_native_balance(self, owner: str) -> int:
        """Return the owner's lamport balance."""

    def get_rent_exempt_lamports(self, size: int) -> int:
        """Return the minimum balance for a rent-exempt account of ``size`` bytes."""

    def find_program_accounts(
        self,
        program_id: str,
        *,
        data_size: int,
        memcmp_offset: int,
        memcmp_bytes: str,
    ) -> List[RawAccount]:
        """Return program-owned accounts matching the size and memcmp filters."""


class SolanaAccountFetcher:
    """:class:`AccountFetcher` backed by ``solana.rpc.api.Client`` with endpoint fallback."""

    def __init__(self, config: Optional[RPCConfig] = None) -> None:
        self._config = config or get_app_config().rpc
        self._endpoints = [str(self._config.primary_url), *map(str, self._config.fallback_urls)]
        self._logger = get_logger(__name__)
        self._thread_local = threading.local()
        self._rent_cache: TTLCache[int, int] = TTLCache(maxsize=32, ttl=3600)
        self._rent_lock = threading.Lock()

    def _clients_for_thread(self) -> List[Client]:
        clients: Optional[List[Client]] = getattr(self._thread_local, "clients", None)
        if clients is None:
            commitment = Commitment(self._config.commitment)
            clients = [
                Client(endpoint, commitment=commitment, timeout=self._config.request_timeout)
                for endpoint in self._endpoints
            ]
            self._thread_local.clients = clients
        return clients

    def _execute(self, method_name: str, *args, **kwargs):
        last_exc: Optional[Exception] = None
        for endpoint, client in zip(self._endpoints, self._clients_for_thread()):
            method = getattr(client, method_name)
            try:
                response = method(*args, **kwargs)
                METRICS.increment("rpc.requests", method=method_name, outcome="ok")
                return response
            except (RPCException, SolanaRpcException) as exc:
                last_exc = exc
                METRICS.increment("rpc.requests", method=method_name, outcome="error")
                self._logger.debug("RPC %s failed on %s: %s", method_name, endpoint, exc)
        raise RpcError(f"RPC {method_name} failed on every endpoint: {last_exc}")

    def get_multiple_accounts(self, addresses: Sequence[str]) -> List[Optional[RawAccount]]:
        results: List[Optional[RawAccount]] = []
        chunk_size = min(self._config.max_accounts_per_request, MAX_MULTIPLE_ACCOUNTS)
        for start in range(0, len(addresses), chunk_size):
            chunk = list(addresses[start : start + chunk_size])
            response = self._execute(
                "get_multiple_accounts",
                [Pubkey.from_string(address) for address in chunk],
                encoding="base64",
            )
            for address, account in zip(chunk, response.value):
                if account is None:
                    results.append(None)
                    continue
                results.append(
                    RawAccount(
                        address=address,
                        owner=str(account.owner),
                        data=bytes(account.data),
                        lamports=account.lamports,
                    )
                )
        return results

    def find_token_account(self, owner: str, mint: str) -> Optional[TokenAccountBalance]:
        response = self._execute(
            "get_token_accounts_by_owner_json_parsed",
            Pubkey.from_string(owner),
            TokenAccountOpts(mint=Pubkey.from_string(mint)),
        )
        best: Optional[TokenAccountBalance] = None
        for keyed in response.value:
            parsed = keyed.account.data.parsed
            token_amount = parsed.get("info", {}).get("tokenAmount", {})
            try:
                amount = TokenAmount(raw=int(token_amount["amount"]), decimals=int(token_amount["decimals"]))
            except (KeyError, TypeError, ValueError) as exc:
                raise DecodeError(f"token account {keyed.pubkey} has no parsable tokenAmount") from exc
            candidate = TokenAccountBalance(address=str(keyed.pubkey), mint=mint, amount=amount)
            if best is None or candidate.amount.raw > best.amount.raw:
                best = candidate
        return best

    def get_native_balance(self, owner: str) -> int:
        return int(self._execute("get_balance", Pubkey.from_string(owner)).value)

    def get_rent_exempt_lamports(self, size: int) -> int:
        with self._rent_lock:
            cached = self._rent_cache.get(size)
        if cached is not None:
            return cached
        lamports = int(self._execute("get_minimum_balance_for_rent_exemption", size).value)
        with self._rent_lock:
            self._rent_cache[size] = lamports
        return lamports

    def find_program_accounts(
        self,
        program_id: str,
        *,
        data_size: int,
        memcmp_offset: int,
        memcmp_bytes: str,
    ) -> List[RawAccount]:
        response = self._execute(
            "get_program_accounts",
            Pubkey.from_string(program_id),
            encoding="base64",
            filters=[data_size, MemcmpOpts(offset=memcmp_offset, bytes=memcmp_bytes)],
        )
        return [
            RawAccount(
                address=str(keyed.pubkey),
                owner=str(keyed.account.owner),
                data=bytes(keyed.account.data),
                lamports=keyed.account.lamports,
            )
            for keyed in response.value
        ]


def _token_account_amount(account: Optional[RawAccount], label: str) -> int:
    if account is None:
        raise DecodeError(f"{label} does not exist")
    try:
        return int(TOKEN_ACCOUNT_LAYOUT.parse(account.data).amount)
    except ConstructError as exc:
        raise DecodeError(f"{label} is not a token account: {exc}") from exc


def _mint_supply(account: Optional[RawAccount], label: str) -> int:
    if account is None:
        raise DecodeError(f"{label} does not exist")
    try:
        return int(MINT_LAYOUT.parse(account.data).supply)
    except ConstructError as exc:
        raise DecodeError(f"{label} is not a mint: {exc}") from exc


class PoolStateLoader:
    """Refreshes pool reserve and LP supply snapshots in a single batched read.

    :meth:`refresh` isolates failures per pool: a pool whose vaults or LP mint
    cannot be decoded comes back without snapshots and the rest of the batch
    is unaffected. :meth:`refresh_one` raises instead.
    """

    def __init__(self, fetcher: AccountFetcher) -> None:
        self._fetcher = fetcher
        self._logger = get_logger(__name__)

    @staticmethod
    def _addresses(pool: Pool) -> List[str]:
        return [pool.pool_coin_token_account, pool.pool_pc_token_account, pool.lp.mint]

    @staticmethod
    def _snapshot(pool: Pool, accounts: Sequence[Optional[RawAccount]]) -> Pool:
        coin_account, pc_account, lp_mint = accounts
        coin_raw = _token_account_amount(coin_account, f"{pool.name} coin vault")
        pc_raw = _token_account_amount(pc_account, f"{pool.name} pc vault")
        supply_raw = _mint_supply(lp_mint, f"{pool.name} LP mint")
        return pool.with_snapshots(
            coin_balance=TokenAmount(coin_raw, pool.coin.decimals),
            pc_balance=TokenAmount(pc_raw, pool.pc.decimals),
            lp_total_supply=TokenAmount(supply_raw, pool.lp.decimals),
        )

    def refresh(self, pools: Sequence[Pool]) -> List[Pool]:
        addresses: List[str] = []
        for pool in pools:
            addresses.extend(self._addresses(pool))
        accounts = self._fetcher.get_multiple_accounts(addresses)
        refreshed: List[Pool] = []
        failed = 0
        for index, pool in enumerate(pools):
            try:
                refreshed.append(self._snapshot(pool, accounts[index * 3 : index * 3 + 3]))
            except DecodeError as exc:
                failed += 1
                self._logger.warning("Pool %s v%s has no snapshot: %s", pool.name, pool.version, exc.detail)
                refreshed.append(pool.without_snapshots())
        METRICS.increment("pool_snapshots", len(pools) - failed, outcome="decoded")
        METRICS.increment("pool_snapshots", failed, outcome="failed")
        return refreshed

    def refresh_one(self, pool: Pool) -> Pool:
        return self._snapshot(pool, self._fetcher.get_multiple_accounts(self._addresses(pool)))


class FarmStateLoader:
    """Fetches and decodes farm state accounts for analytics and staking."""

    def __init__(self, fetcher: AccountFetcher, codec: Optional[AccountLayoutCodec] = None) -> None:
        self._fetcher = fetcher
        self._codec = codec or AccountLayoutCodec()
        self._logger = get_logger(__name__)

    def load(self, farms: Sequence[Farm]) -> FarmStateBatch:
        """Decode every farm state and attach the LP balance the farm holds.

        Two batched reads are issued: one for the farm state accounts and one
        for the pool LP token accounts they reference.
        """

        failures: List[RecordFailure] = []
        decoded: List[StakeAccountInfo] = []
        raw_states = self._fetcher.get_multiple_accounts([farm.pool_id for farm in farms])
        for farm, account in zip(farms, raw_states):
            try:
                if account is None:
                    raise DecodeError(f"farm state {farm.pool_id} does not exist")
                decoded.append(self._codec.decode_stake_account(account.data, account.owner, farm.pool_id))
            except FarmKitError as exc:
                failures.append(RecordFailure(address=farm.pool_id, kind=exc.kind, detail=exc.detail))

        lp_accounts = self._fetcher.get_multiple_accounts([state.pool_lp_token_account for state in decoded])
        states: List[StakeAccountInfo] = []
        for state, lp_account in zip(decoded, lp_accounts):
            try:
                amount = _token_account_amount(lp_account, f"pool LP account {state.pool_lp_token_account}")
            except DecodeError as exc:
                failures.append(RecordFailure(address=state.address, kind=exc.kind, detail=exc.detail))
                continue
            states.append(state.with_deposited_lp(amount))

        METRICS.increment("farm_states", len(states), outcome="decoded")
        METRICS.increment("farm_states", len(failures), outcome="failed")
        if failures:
            self._logger.warning("Failed to load %d of %d farm states", len(failures), len(farms))
        return FarmStateBatch(states=tuple(states), failures=tuple(failures))

    def stake_account(self, address: str) -> StakeAccountInfo:
        (account,) = self._fetcher.get_multiple_accounts([address])
        if account is None:
            raise DecodeError(f"account {address} does not exist")
        return self._codec.decode_stake_account(account.data, account.owner, address)

    def find_user_stake(self, farm: Farm, owner: str) -> Optional[UserStakeInfo]:
        matches: Dict[str, UserStakeInfo] = {}
        accounts = self._fetcher.find_program_accounts(
            farm.program_id,
            data_size=user_stake_layout_size(farm.family),
            memcmp_offset=USER_STAKE_OWNER_OFFSET,
            memcmp_bytes=owner,
        )
        for account in accounts:
            info = self._codec.decode_user_stake(account.data, farm.family, account.address)
            if info.pool_id == farm.pool_id:
                matches[account.address] = info
        if not matches:
            return None
        return max(matches.values(), key=lambda info: info.deposit_balance)


__all__ = [
    "AccountFetcher",
    "FarmStateLoader",
    "PoolStateLoader",
    "SolanaAccountFetcher",
]
