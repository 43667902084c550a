"""Stake, harvest and unstake plans for single-asset and fusion farms."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..config.settings import ProgramConfig, get_app_config
from ..datalake.schemas import Farm, InstructionFamily, TokenInfo, UserStakeInfo
from ..errors import InsufficientBalance, ValidationError
from ..ingestion.account_codec import user_stake_layout_size
from ..ingestion.onchain import AccountFetcher, FarmStateLoader
from ..ingestion.registry import PoolRegistry
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.amounts import HumanValue, TokenAmount
from .instructions import (
    Address,
    associated_token_account_instruction,
    create_program_account,
    deposit_instruction,
    to_pubkey,
    withdraw_instruction,
)
from .plan import PlanDraft, TransactionPlan


class StakeAction(str, Enum):
    STAKE = "stake"
    HARVEST = "harvest"
    UNSTAKE = "unstake"


class ProgramFamily(str, Enum):
    """Which farm catalog a stake request targets."""

    SINGLE_ASSET = "single_asset"
    FUSION = "fusion"


class _AccountResolver:
    """Resolves owner token accounts once per mint, creating ATAs as needed."""

    def __init__(self, fetcher: AccountFetcher, draft: PlanDraft, owner: str) -> None:
        self._fetcher = fetcher
        self._draft = draft
        self._owner = owner
        self._resolved: Dict[str, Pubkey] = {}

    def existing(self, token: TokenInfo):
        return self._fetcher.find_token_account(self._owner, token.mint)

    def ensure(self, token: TokenInfo) -> Pubkey:
        if token.mint in self._resolved:
            return self._resolved[token.mint]
        account = self.existing(token)
        if account is not None:
            address = to_pubkey(account.address)
        else:
            address, instruction = associated_token_account_instruction(
                self._draft.payer, self._draft.payer, token.mint
            )
            self._draft.add(instruction)
        self._resolved[token.mint] = address
        return address

    def remember(self, token: TokenInfo, address: Pubkey) -> None:
        self._resolved[token.mint] = address


class StakeTransactionBuilder:
    """Constructs farm deposit and withdraw plans."""

    def __init__(
        self,
        fetcher: AccountFetcher,
        registry: PoolRegistry,
        *,
        programs: Optional[ProgramConfig] = None,
        farm_loader: Optional[FarmStateLoader] = None,
    ) -> None:
        self._fetcher = fetcher
        self._registry = registry
        self._programs = programs or get_app_config().programs
        self._farm_loader = farm_loader or FarmStateLoader(fetcher)
        self._logger = get_logger(__name__)

    def resolve_farm(
        self,
        family: ProgramFamily,
        farm_name: Optional[str] = None,
        farm_version: Optional[int] = None,
    ) -> Farm:
        family = ProgramFamily(family)
        if family is ProgramFamily.SINGLE_ASSET:
            farm = self._registry.default_stake_farm(self._programs)
        else:
            if not farm_name or farm_version is None:
                raise ValidationError("fusion farms need farm_name and farm_version")
            farm = self._registry.farm(farm_name, farm_version)
        if farm.family is InstructionFamily.V4 and farm.reward_b is None:
            raise ValidationError(f"farm {farm.name} v{farm.version} has no second reward token")
        return farm

    def plan_stake_action(
        self,
        action: StakeAction,
        family: ProgramFamily,
        owner: Address,
        amount: HumanValue = 0,
        farm_name: Optional[str] = None,
        farm_version: Optional[int] = None,
    ) -> TransactionPlan:
        action = StakeAction(action)
        farm = self.resolve_farm(family, farm_name, farm_version)
        owner_key = to_pubkey(owner)
        owner_str = str(owner_key)

        if action is StakeAction.HARVEST:
            raw_amount = TokenAmount.zero(farm.lp.decimals)
        else:
            raw_amount = TokenAmount.from_human(amount, farm.lp.decimals)
            if raw_amount.is_zero():
                raise ValidationError(f"{action.value} amount must be positive")

        draft = PlanDraft(payer=owner_key, description=f"{action.value} {farm.name} v{farm.version}")
        accounts = _AccountResolver(self._fetcher, draft, owner_str)

        if action is StakeAction.STAKE:
            lp_account = accounts.existing(farm.lp)
            if lp_account is None:
                raise ValidationError(f"owner {owner_str} has no {farm.lp.symbol} token account")
            if lp_account.amount.raw < raw_amount.raw:
                METRICS.increment("plans.rejected", reason="insufficient_balance")
                raise InsufficientBalance(lp_account.amount.to_human(), raw_amount.to_human(), mint=farm.lp.mint)

        record = self._farm_loader.find_user_stake(farm, owner_str)
        if action is StakeAction.UNSTAKE:
            if record is None:
                raise ValidationError(f"owner {owner_str} has no stake in {farm.name} v{farm.version}")
            if record.deposit_balance < raw_amount.raw:
                METRICS.increment("plans.rejected", reason="insufficient_balance")
                deposited = TokenAmount(record.deposit_balance, farm.lp.decimals)
                raise InsufficientBalance(deposited.to_human(), raw_amount.to_human(), mint=farm.lp.mint)
        elif action is StakeAction.HARVEST and record is None:
            raise ValidationError(f"owner {owner_str} has nothing to harvest in {farm.name} v{farm.version}")

        if action is StakeAction.STAKE:
            accounts.remember(farm.lp, to_pubkey(lp_account.address))
        user_lp = accounts.ensure(farm.lp)
        user_reward = accounts.ensure(farm.reward)
        user_reward_b = None
        if farm.family is InstructionFamily.V4:
            user_reward_b = accounts.ensure(farm.reward_b)

        user_info = self._user_info_account(draft, farm, record)
        encode = withdraw_instruction if action is StakeAction.UNSTAKE else deposit_instruction
        draft.add(
            encode(
                farm,
                user_info=user_info,
                owner=owner_key,
                user_lp=user_lp,
                user_reward=user_reward,
                user_reward_b=user_reward_b,
                amount=raw_amount.raw,
            )
        )
        plan = draft.freeze()
        METRICS.increment("plans.built", action=action.value, family=farm.family.value)
        self._logger.info(
            "Planned %s on %s v%s for %s: amount=%s", action.value, farm.name, farm.version, owner_str, raw_amount
        )
        return plan

    def _user_info_account(self, draft: PlanDraft, farm: Farm, record: Optional[UserStakeInfo]) -> Pubkey:
        if record is not None:
            return to_pubkey(record.address)
        space = user_stake_layout_size(farm.family)
        stake_info = Keypair()
        draft.add(
            create_program_account(
                draft.payer,
                stake_info.pubkey(),
                lamports=self._fetcher.get_rent_exempt_lamports(space),
                space=space,
                program_id=farm.program_id,
            )
        )
        draft.add_signer(stake_info)
        return stake_info.pubkey()


__all__ = ["ProgramFamily", "StakeAction", "StakeTransactionBuilder"]
