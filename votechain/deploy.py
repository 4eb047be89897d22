"""
Deployment orchestration: submit one construction transaction, wait for the
ledger to settle it, and return the descriptor of the deployed contract.
"""

import logging
import time
from typing import Any, Callable, Sequence

from tallyc import Artifact

from .chain.ledger import RESOURCE_LIMIT_REASONS, TxStatus
from .client import LedgerClient
from .descriptor import Descriptor
from .errors import ResourceLimitExceeded, SubmissionRejected


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1


def deploy(client: LedgerClient, artifact: Artifact, constructor_args: Sequence[Any],
           submitter: str, resource_limit: int,
           poll_interval: float = DEFAULT_POLL_INTERVAL,
           sleep: Callable[[float], Any] = time.sleep) -> Descriptor:
    """
    Deploy artifact and wait for confirmation.

    Exactly one construction transaction is submitted and it is never
    resubmitted: a second submission would create a second, independent
    contract. There is no timeout; the wait lasts until the ledger
    confirms or rejects.

    Raises ResourceLimitExceeded when the gas ceiling was the problem and
    SubmissionRejected for any other rejection. Nothing is persisted.
    """
    args = list(constructor_args)
    tx_id = client.submit_deployment(artifact.bytecode, args, submitter, resource_limit)
    logger.info("Contract transaction sent: TransactionHash: %s waiting to be mined...", tx_id)

    receipt = client.status(tx_id)
    polls = 0
    while receipt.status == TxStatus.PENDING:
        sleep(poll_interval)
        polls += 1
        receipt = client.status(tx_id)
        logger.debug("Deployment %s still %s after %d poll(s)", tx_id, receipt.status.value, polls)

    if receipt.status == TxStatus.REJECTED:
        message = f"Deployment of {artifact.contract_name} rejected: {receipt.detail}"
        if receipt.reason in RESOURCE_LIMIT_REASONS:
            raise ResourceLimitExceeded(message, tx_id=tx_id, receipt=receipt)
        raise SubmissionRejected(message, tx_id=tx_id, receipt=receipt)

    logger.info("Contract mined! Address: %s (block %d, gas used %d)",
                receipt.contract_address, receipt.block_number, receipt.gas_used)
    return Descriptor(address=receipt.contract_address, abi=artifact.abi)
