"""Transaction plans handed from the builders to the submitter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey


@dataclass(frozen=True, slots=True)
class TransactionPlan:
    """An ordered instruction list plus the ephemeral signers it requires.

    ``signers`` holds keypairs generated while planning (wrapped SOL accounts,
    new stake-info accounts); the owner signs separately at submission.
    """

    payer: Pubkey
    instructions: Tuple[Instruction, ...]
    signers: Tuple[Keypair, ...] = ()
    description: str = ""

    def signer_pubkeys(self) -> List[Pubkey]:
        return [keypair.pubkey() for keypair in self.signers]

    def program_ids(self) -> List[Pubkey]:
        return [instruction.program_id for instruction in self.instructions]

    def to_message(self, blockhash: Hash) -> Message:
        return Message.new_with_blockhash(list(self.instructions), self.payer, blockhash)


@dataclass(slots=True)
class PlanDraft:
    """Mutable builder state; cleanup instructions always land after the main ones."""

    payer: Pubkey
    description: str = ""
    instructions: List[Instruction] = field(default_factory=list)
    cleanup: List[Instruction] = field(default_factory=list)
    signers: List[Keypair] = field(default_factory=list)

    def add(self, *instructions: Instruction) -> None:
        self.instructions.extend(instructions)

    def add_cleanup(self, *instructions: Instruction) -> None:
        self.cleanup.extend(instructions)

    def add_signer(self, keypair: Keypair) -> None:
        self.signers.append(keypair)

    def freeze(self) -> TransactionPlan:
        return TransactionPlan(
            payer=self.payer,
            instructions=tuple(self.instructions + self.cleanup),
            signers=tuple(self.signers),
            description=self.description,
        )


__all__ = ["PlanDraft", "TransactionPlan"]
