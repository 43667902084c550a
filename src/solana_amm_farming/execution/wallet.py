"""Loading the owner keypair that signs farm and liquidity transactions."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..config.settings import WalletConfig, get_app_config
from ..errors import ValidationError


@dataclass(slots=True)
class Wallet:
    """Wrapper around a Solana keypair."""

    keypair: Keypair

    @property
    def public_key(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())


def _read_keypair_file(path: Path) -> bytes:
    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, list) or len(data) != 64:
        raise ValidationError(f"{path} is not a 64 byte JSON keypair file")
    return bytes(data)


def load_wallet(config: Optional[WalletConfig] = None) -> Wallet:
    """Build the wallet from a base58 secret, falling back to a keypair file."""

    cfg = config or get_app_config().wallet
    if cfg.private_key:
        try:
            secret_key = base58.b58decode(cfg.private_key)
        except ValueError as exc:
            raise ValidationError("wallet.private_key is not valid base58") from exc
    elif cfg.keypair_path:
        secret_key = _read_keypair_file(Path(cfg.keypair_path).expanduser())
    else:
        raise ValidationError("no wallet configured: set WALLET__PRIVATE_KEY or WALLET__KEYPAIR_PATH")

    try:
        keypair = Keypair.from_bytes(secret_key)
    except ValueError as exc:
        raise ValidationError(f"wallet secret is not a valid keypair: {exc}") from exc
    return Wallet(keypair=keypair)


__all__ = ["Wallet", "load_wallet"]
