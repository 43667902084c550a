"""Signing, sending and confirming transaction plans."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..config.settings import AppConfig, get_app_config
from ..errors import ConfirmationTimeout, RpcError, ValidationError
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from .plan import TransactionPlan

_CONFIRMED = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    signature: str
    transaction: Any = None
    attempts: int = 1


class SolanaTransactionSubmitter:
    """Executes plans against the primary RPC endpoint.

    Sending is retried ``execution.max_submit_attempts`` times with a fresh
    blockhash per attempt; only RPC send failures are retried. Confirmation
    polling stops after ``execution.confirm_timeout_seconds``.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        client: Optional[Client] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        cfg = config or get_app_config()
        self._rpc = cfg.rpc
        self._execution = cfg.execution
        self._client = client or Client(
            str(self._rpc.primary_url),
            commitment=Commitment(self._rpc.commitment),
            timeout=self._rpc.request_timeout,
        )
        self._clock = clock
        self._sleep = sleep
        self._logger = get_logger(__name__)

    def submit(
        self,
        plan: TransactionPlan,
        signers: Sequence[Keypair],
        *,
        timeout: Optional[float] = None,
    ) -> SubmissionResult:
        """Sign, send and wait for confirmation.

        ``timeout`` overrides ``execution.confirm_timeout_seconds`` for this call.
        """

        confirm_timeout = self._execution.confirm_timeout_seconds if timeout is None else timeout
        if confirm_timeout < 0:
            raise ValidationError(f"timeout must not be negative: {timeout}")
        keypairs = self._collect_signers(plan, signers)
        retrying = Retrying(
            stop=stop_after_attempt(self._execution.max_submit_attempts),
            wait=wait_fixed(self._execution.retry_backoff_seconds),
            retry=retry_if_exception_type(RpcError),
            sleep=self._sleep,
            reraise=True,
        )
        attempts = 0
        for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                signature = self._send(plan, keypairs)
        METRICS.increment("transactions", outcome="sent")
        self._logger.info("Submitted %s as %s (attempt %d)", plan.description or "plan", signature, attempts)
        self._wait_for_confirmation(signature, confirm_timeout)
        METRICS.increment("transactions", outcome="confirmed")
        return SubmissionResult(signature=str(signature), transaction=self._fetch(signature), attempts=attempts)

    def _collect_signers(self, plan: TransactionPlan, signers: Sequence[Keypair]) -> List[Keypair]:
        unique: Dict[str, Keypair] = {}
        for keypair in [*signers, *plan.signers]:
            unique.setdefault(str(keypair.pubkey()), keypair)
        if str(plan.payer) not in unique:
            raise ValidationError(f"payer {plan.payer} is not among the provided signers")
        return list(unique.values())

    def _send(self, plan: TransactionPlan, keypairs: List[Keypair]) -> Signature:
        opts = TxOpts(
            skip_preflight=self._execution.skip_preflight,
            preflight_commitment=Commitment(self._rpc.commitment),
        )
        try:
            blockhash = self._client.get_latest_blockhash().value.blockhash
            transaction = Transaction(keypairs, plan.to_message(blockhash), blockhash)
            return self._client.send_transaction(transaction, opts=opts).value
        except (RPCException, SolanaRpcException) as exc:
            METRICS.increment("transactions", outcome="send_failed")
            self._logger.warning("Transaction submission failed: %s", exc)
            raise RpcError(f"send_transaction failed: {exc}") from exc

    def _wait_for_confirmation(self, signature: Signature, timeout: float) -> None:
        deadline = self._clock() + timeout
        with METRICS.timer("transactions.confirm_seconds"):
            while True:
                try:
                    status = self._client.get_signature_statuses([signature]).value[0]
                except (RPCException, SolanaRpcException) as exc:
                    raise RpcError(f"get_signature_statuses failed: {exc}") from exc
                if status is not None:
                    if status.err is not None:
                        METRICS.increment("transactions", outcome="failed")
                        raise RpcError(f"transaction {signature} failed: {status.err}")
                    if status.confirmation_status in _CONFIRMED:
                        return
                if self._clock() >= deadline:
                    METRICS.increment("transactions", outcome="timeout")
                    raise ConfirmationTimeout(str(signature), timeout)
                self._sleep(self._execution.confirm_poll_interval_seconds)

    def _fetch(self, signature: Signature):
        try:
            return self._client.get_transaction(signature, max_supported_transaction_version=0).value
        except (RPCException, SolanaRpcException) as exc:
            raise RpcError(f"get_transaction failed: {exc}") from exc


__all__ = ["SolanaTransactionSubmitter", "SubmissionResult"]
