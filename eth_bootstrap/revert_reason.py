"""Revert reason extraction.

Ethereum nodes do not store why a transaction failed. We replay the
transaction with ``eth_call`` against the current state and catch the error.

Further reading

- `Web3.py Patterns: Revert Reason Lookups <https://snakecharmers.ethereum.org/web3py-revert-reason-parsing/>`_

"""

import logging
from typing import Union

from eth_tester.exceptions import TransactionFailed
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError

logger = logging.getLogger(__name__)


#: Returned if the replay does not fail
UNKNOWN_REVERT_REASON = "<could not extract the revert reason>"


def fetch_transaction_revert_reason(
    web3: Web3,
    tx_hash: Union[HexBytes, str],
    unknown_error_message=UNKNOWN_REVERT_REASON,
) -> str:
    """Gets a transaction revert reason.

    The replay runs against the current state, so the reason might not be
    the one at the time of the failure, e.g. if the contract was deployed
    by someone else in the meanwhile.

    Example:

    .. code-block:: python

        receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] == 0:
            reason = fetch_transaction_revert_reason(web3, tx_hash)

    :param tx_hash:
        Transaction hash of which reason we extract by simulation.

    :param unknown_error_message:
        Return this message if the revert reason extraction fails.

    :return:
        The revert reason or the placeholder message if we could not extract the reason.
    """

    tx_hash = HexBytes(tx_hash)
    tx = web3.eth.get_transaction(tx_hash)

    replay_tx = {
        "from": tx["from"],
        "value": tx["value"],
        "data": tx.get("input") or tx.get("data"),
        "gas": tx["gas"],
    }

    # Contract creation has no to
    if tx.get("to"):
        replay_tx["to"] = tx["to"]
        if not web3.eth.get_code(tx["to"]):
            logger.warning("fetch_transaction_revert_reason(): target address %s is not a smart contract, likely cannot fetch the revert reason", tx["to"])

    try:
        result = web3.eth.call(replay_tx)
    except ContractLogicError as e:
        return e.args[0]
    except TransactionFailed as e:
        # Ethereum Tester
        return str(e.args[0])
    except ValueError as e:
        logger.debug("Revert exception result is: %s", e)
        data = e.args[0] if e.args else None
        if isinstance(data, str):
            # geth
            return data
        elif isinstance(data, dict) and "message" in data:
            # Ganache, Anvil
            return data["message"]
        raise

    logger.error(
        "Transaction %s succeeded when we tried to fetch its revert reason, tx block: %s, gas: %s, result: %s. Maybe the chain tip is unstable or the contract state has changed.",
        Web3.to_hex(tx_hash),
        tx.get("blockNumber"),
        tx["gas"],
        Web3.to_hex(result),
    )
    return unknown_error_message
