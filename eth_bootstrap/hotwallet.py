"""Deployer wallet.

- Create a local deployer account from a private key

- Sign deployment transactions with manual nonce management,
  so that we know the nonce of a CREATE deployment before it is broadcast
"""

import logging
import secrets
from typing import NamedTuple, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)


class SignedTransactionWithNonce(NamedTuple):
    """Signed transaction and the nonce it consumed.

    Retains the unsigned source so broadcast failures can be diagnosed.
    """

    #: Bytes to broadcast
    raw_transaction: HexBytes

    #: Transaction hash
    hash: HexBytes

    #: What was the source nonce for this transaction
    nonce: int

    #: Signer
    address: str

    #: Unencoded transaction data as a dict
    source: Optional[dict] = None

    def __repr__(self):
        return f"<SignedTransactionWithNonce hash:{Web3.to_hex(self.hash)} nonce:{self.nonce}>"


def get_tx_broadcast_data(signed_tx) -> HexBytes:
    """Get raw transaction bytes.

    eth_account renamed ``rawTransaction`` to ``raw_transaction``.
    """
    if hasattr(signed_tx, "raw_transaction"):
        return signed_tx.raw_transaction
    elif hasattr(signed_tx, "rawTransaction"):
        return signed_tx.rawTransaction
    else:
        raise AttributeError(f"Signed transaction has neither raw_transaction nor rawTransaction: {signed_tx}")


class HotWallet:
    """Deployer account with its private key in the process memory.

    Example:

    .. code-block:: python

        wallet = HotWallet.from_private_key(os.environ["PRIVATE_KEY"])
        wallet.sync_nonce(web3)
        environment = Web3ExecutionEnvironment(web3, wallet)

    .. note ::

        This class is not thread safe. If multiple threads try to sign transactions
        at the same time, nonce tracking may be lost.
    """

    def __init__(self, account: LocalAccount):
        self.account = account
        self.current_nonce: Optional[int] = None

    def __repr__(self):
        return f"<Hot wallet {self.account.address}>"

    @property
    def address(self) -> HexAddress:
        """Ethereum address of the wallet."""
        return self.account.address

    def sync_nonce(self, web3: Web3):
        """Initialise the current nonce from the on-chain data."""
        new_nonce = web3.eth.get_transaction_count(self.account.address)
        if self.current_nonce and new_nonce < self.current_nonce:
            logger.warning("Nonce sync failed, read onchain nonce %d that is older than our current nonce %d. The last transaction may not be broadcasted yet.", new_nonce, self.current_nonce)
            return
        self.current_nonce = new_nonce
        logger.info("Synced nonce for %s to %d", self.account.address, self.current_nonce)

    def allocate_nonce(self) -> int:
        """Get the next free nonce and increase the counter."""
        assert self.current_nonce is not None, f"Nonce is not yet synced from the blockchain: {self}"
        nonce = self.current_nonce
        self.current_nonce += 1
        return nonce

    def sign_transaction_with_new_nonce(self, tx: dict) -> SignedTransactionWithNonce:
        """Signs a transaction and allocates a nonce for it.

        :param tx:
            Ethereum transaction data as a dict.
            This is modified in-place to include nonce.
        """
        assert type(tx) == dict
        assert "nonce" not in tx
        tx["nonce"] = self.allocate_nonce()
        _signed = self.account.sign_transaction(tx)
        return SignedTransactionWithNonce(
            raw_transaction=get_tx_broadcast_data(_signed),
            hash=HexBytes(_signed.hash),
            nonce=tx["nonce"],
            address=self.address,
            source=tx,
        )

    @staticmethod
    def fill_in_gas_price(web3: Web3, tx: dict) -> dict:
        """Fill the gas price fields of a transaction.

        - London chains get ``maxFeePerGas`` and ``maxPriorityFeePerGas``
        - Legacy chains get ``gasPrice``

        .. note ::

            Mutates ``tx`` in place.
        """
        last_block = web3.eth.get_block("latest")
        base_fee = last_block.get("baseFeePerGas")
        if base_fee is not None:
            max_priority_fee_per_gas = web3.eth.max_priority_fee
            tx["maxPriorityFeePerGas"] = max_priority_fee_per_gas
            tx["maxFeePerGas"] = max(max_priority_fee_per_gas + 2 * base_fee, max_priority_fee_per_gas)
            tx.pop("gasPrice", None)
        else:
            tx["gasPrice"] = web3.eth.gas_price
        return tx

    @staticmethod
    def from_private_key(key: str) -> "HotWallet":
        """Create a hot wallet from a 0x prefixed hex private key."""
        assert type(key) == str, f"Expected private key as string, got {type(key)}"
        assert key.startswith("0x"), f"This system assumes private keys are prefixed with 0x, your key starts with {key[0:4]}... Please add 0x prefix to your private key hex string"
        account = Account.from_key(key)
        return HotWallet(account)

    @staticmethod
    def create_for_testing(web3: Web3, test_account_n=0, eth_amount=1) -> "HotWallet":
        """Creates a new hot wallet and seeds it with ETH from one of well-known test accounts."""
        wallet = HotWallet.from_private_key("0x" + secrets.token_hex(32))
        tx_hash = web3.eth.send_transaction(
            {
                "from": web3.eth.accounts[test_account_n],
                "to": wallet.address,
                "value": eth_amount * 10**18,
            }
        )
        web3.eth.wait_for_transaction_receipt(tx_hash)
        wallet.sync_nonce(web3)
        return wallet
