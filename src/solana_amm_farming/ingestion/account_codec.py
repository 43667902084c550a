"""Decode farm and stake account buffers into typed records."""

from __future__ import annotations

from typing import Dict, Optional

from construct import ConstructError, Struct
from solders.pubkey import Pubkey

from ..config.settings import ProgramConfig, get_app_config
from ..datalake.schemas import InstructionFamily, StakeAccountInfo, UserStakeInfo
from ..errors import DecodeError, UnknownLayout
from .layouts import (
    STAKE_INFO_LAYOUT,
    STAKE_INFO_LAYOUT_V4,
    USER_STAKE_INFO_LAYOUT,
    USER_STAKE_INFO_LAYOUT_V4,
)

_STAKE_LAYOUTS: Dict[InstructionFamily, Struct] = {
    InstructionFamily.V3: STAKE_INFO_LAYOUT,
    InstructionFamily.V4: STAKE_INFO_LAYOUT_V4,
}
_USER_STAKE_LAYOUTS: Dict[InstructionFamily, Struct] = {
    InstructionFamily.V3: USER_STAKE_INFO_LAYOUT,
    InstructionFamily.V4: USER_STAKE_INFO_LAYOUT_V4,
}


def _key(raw: bytes) -> str:
    return str(Pubkey.from_bytes(bytes(raw)))


def _key_bytes(address: Optional[str]) -> bytes:
    if address is None:
        return bytes(32)
    return bytes(Pubkey.from_string(address))


def user_stake_layout_size(family: InstructionFamily) -> int:
    return _USER_STAKE_LAYOUTS[family].sizeof()


def stake_layout_size(family: InstructionFamily) -> int:
    return _STAKE_LAYOUTS[family].sizeof()


class AccountLayoutCodec:
    """Selects the account layout from the program that owns the account."""

    def __init__(self, programs: Optional[ProgramConfig] = None) -> None:
        cfg = programs or get_app_config().programs
        self._families: Dict[str, InstructionFamily] = {
            cfg.stake_program_id: InstructionFamily.V3,
            cfg.stake_program_id_v4: InstructionFamily.V4,
            cfg.stake_program_id_v5: InstructionFamily.V4,
        }

    def family_for_owner(self, owner: str) -> InstructionFamily:
        try:
            return self._families[str(owner)]
        except KeyError:
            raise UnknownLayout(str(owner)) from None

    def decode_stake_account(self, data: bytes, owner: str, address: str = "") -> StakeAccountInfo:
        family = self.family_for_owner(owner)
        parsed = self._parse(_STAKE_LAYOUTS[family], data, f"farm state {address or '<unknown>'}")
        if family is InstructionFamily.V3:
            return StakeAccountInfo(
                address=address,
                family=family,
                state=parsed.state,
                nonce=parsed.nonce,
                pool_lp_token_account=_key(parsed.pool_lp_token_account),
                pool_reward_token_account=_key(parsed.pool_reward_token_account),
                total_reward=parsed.total_reward,
                reward_per_share=parsed.reward_per_share_net,
                reward_per_block=parsed.reward_per_block,
                last_block=parsed.last_block,
                owner=_key(parsed.owner),
                fee_owner=_key(parsed.fee_owner),
                fee_y=parsed.fee_y,
                fee_x=parsed.fee_x,
            )
        return StakeAccountInfo(
            address=address,
            family=family,
            state=parsed.state,
            nonce=parsed.nonce,
            pool_lp_token_account=_key(parsed.pool_lp_token_account),
            pool_reward_token_account=_key(parsed.pool_reward_token_account),
            total_reward=parsed.total_reward,
            reward_per_share=parsed.per_share,
            reward_per_block=parsed.per_block,
            last_block=parsed.last_block,
            owner=_key(parsed.owner),
            option=parsed.option,
            pool_reward_token_account_b=_key(parsed.pool_reward_token_account_b),
            total_reward_b=parsed.total_reward_b,
            reward_per_share_b=parsed.per_share_b,
            reward_b_per_block=parsed.per_block_b,
        )

    def encode_stake_account(self, info: StakeAccountInfo) -> bytes:
        if info.family is InstructionFamily.V3:
            payload = {
                "state": info.state,
                "nonce": info.nonce,
                "pool_lp_token_account": _key_bytes(info.pool_lp_token_account),
                "pool_reward_token_account": _key_bytes(info.pool_reward_token_account),
                "owner": _key_bytes(info.owner),
                "fee_owner": _key_bytes(info.fee_owner),
                "fee_y": info.fee_y or 0,
                "fee_x": info.fee_x or 0,
                "total_reward": info.total_reward,
                "reward_per_share_net": info.reward_per_share,
                "last_block": info.last_block,
                "reward_per_block": info.reward_per_block,
            }
        else:
            payload = {
                "state": info.state,
                "nonce": info.nonce,
                "pool_lp_token_account": _key_bytes(info.pool_lp_token_account),
                "pool_reward_token_account": _key_bytes(info.pool_reward_token_account),
                "total_reward": info.total_reward,
                "per_share": info.reward_per_share,
                "per_block": info.reward_per_block,
                "option": info.option or 0,
                "pool_reward_token_account_b": _key_bytes(info.pool_reward_token_account_b),
                "total_reward_b": info.total_reward_b or 0,
                "per_share_b": info.reward_per_share_b or 0,
                "per_block_b": info.reward_b_per_block or 0,
                "last_block": info.last_block,
                "owner": _key_bytes(info.owner),
            }
        return self._build(_STAKE_LAYOUTS[info.family], payload)

    def decode_user_stake(self, data: bytes, family: InstructionFamily, address: str = "") -> UserStakeInfo:
        parsed = self._parse(_USER_STAKE_LAYOUTS[family], data, f"stake record {address or '<unknown>'}")
        return UserStakeInfo(
            address=address,
            family=family,
            state=parsed.state,
            pool_id=_key(parsed.pool_id),
            staker_owner=_key(parsed.staker_owner),
            deposit_balance=parsed.deposit_balance,
            reward_debt=parsed.reward_debt,
            reward_debt_b=parsed.reward_debt_b if family is InstructionFamily.V4 else None,
        )

    def encode_user_stake(self, info: UserStakeInfo) -> bytes:
        payload = {
            "state": info.state,
            "pool_id": _key_bytes(info.pool_id),
            "staker_owner": _key_bytes(info.staker_owner),
            "deposit_balance": info.deposit_balance,
            "reward_debt": info.reward_debt,
        }
        if info.family is InstructionFamily.V4:
            payload["reward_debt_b"] = info.reward_debt_b or 0
        return self._build(_USER_STAKE_LAYOUTS[info.family], payload)

    def _parse(self, layout: Struct, data: bytes, label: str):
        expected = layout.sizeof()
        if len(data) < expected:
            raise DecodeError(f"{label}: buffer holds {len(data)} bytes, layout needs {expected}")
        try:
            return layout.parse(bytes(data))
        except ConstructError as exc:
            raise DecodeError(f"{label}: {exc}") from exc

    def _build(self, layout: Struct, payload: dict) -> bytes:
        try:
            return layout.build(payload)
        except ConstructError as exc:
            raise DecodeError(f"cannot encode account: {exc}") from exc


__all__ = ["AccountLayoutCodec", "stake_layout_size", "user_stake_layout_size"]
