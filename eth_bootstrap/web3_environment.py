"""Execution environment for real chains using web3.py.

- Salted creations go through the deterministic deployment proxy
  with call data ``salt ++ init_code``

- Unsalted creations are plain contract creation transactions

- Transactions are signed locally with a :py:class:`eth_bootstrap.hotwallet.HotWallet`,
  or sent with ``eth_sendTransaction`` for accounts unlocked on the node (Anvil, eth-tester)

Example:

.. code-block:: python

    web3 = Web3(HTTPProvider(os.environ["JSON_RPC_URL"]))
    wallet = HotWallet.from_private_key(os.environ["PRIVATE_KEY"])
    wallet.sync_nonce(web3)

    environment = Web3ExecutionEnvironment(web3, wallet)
    receipt = environment.submit_creation(wallet.address, init_code, salt=1)
"""

import datetime
import logging
from contextlib import contextmanager

from eth_tester.exceptions import TransactionFailed
from eth_typing import ChecksumAddress, HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from eth_bootstrap.abi import encode_with_signature
from eth_bootstrap.create2 import DETERMINISTIC_DEPLOYMENT_PROXY, Salt, compute_init_code_hash, predict_create2_address, salt_to_bytes
from eth_bootstrap.environment import CreationReceipt, ExecutionEnvironment, ProxySnapshot
from eth_bootstrap.errors import CallReverted, ConfirmationTimedOut, EnvironmentFailure
from eth_bootstrap.hotwallet import HotWallet
from eth_bootstrap.revert_reason import UNKNOWN_REVERT_REASON, fetch_transaction_revert_reason

logger = logging.getLogger(__name__)


#: ERC-1967 implementation slot, ``bytes32(uint256(keccak256("eip1967.proxy.implementation")) - 1)``
IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC

#: OpenZeppelin 5.x ``Initializable`` storage, ``_initialized`` is the lowest uint64
INITIALIZABLE_SLOT = 0xF0C57E16840DF040F15088DC2F81FE391C3923BEC73E23A9662EFC9C229C6A00

#: Upgrade function of UUPS and transparent proxies
UPGRADE_SIGNATURE = "upgradeToAndCall(address,bytes)"


@contextmanager
def node_errors(description: str):
    """Map transport failures, e.g. a dropped HTTP connection, to :py:class:`eth_bootstrap.errors.EnvironmentFailure`.

    ``requests`` connection errors and timeouts are ``OSError`` subclasses.
    """
    try:
        yield
    except OSError as e:
        raise EnvironmentFailure(f"{description} failed, JSON-RPC node unreachable: {e}") from e


class Web3ExecutionEnvironment(ExecutionEnvironment):
    """Deploy to a chain over JSON-RPC."""

    def __init__(
        self,
        web3: Web3,
        wallet: HotWallet | None = None,
        confirmation_timeout=datetime.timedelta(minutes=5),
        poll_delay=datetime.timedelta(seconds=1),
        create2_factory: HexAddress | str = DETERMINISTIC_DEPLOYMENT_PROXY,
        gas_margin: float = 1.2,
    ):
        """
        :param wallet:
            Signs transactions of its own address.
            Other senders must be unlocked on the node.

        :param confirmation_timeout:
            Raise :py:class:`eth_bootstrap.errors.ConfirmationTimedOut` if no receipt is seen by then

        :param create2_factory:
            CREATE2 deployer for salted creations

        :param gas_margin:
            Multiply estimated gas by this
        """
        assert isinstance(web3, Web3), f"Got {type(web3)}"
        assert isinstance(confirmation_timeout, datetime.timedelta)
        assert isinstance(poll_delay, datetime.timedelta)
        self.web3 = web3
        self.wallet = wallet
        self.confirmation_timeout = confirmation_timeout
        self.poll_delay = poll_delay
        self.gas_margin = gas_margin
        self._create2_factory = Web3.to_checksum_address(create2_factory)
        self._chain_id = None

    def __repr__(self):
        return f"<Web3ExecutionEnvironment chain:{self.chain_id} wallet:{self.wallet}>"

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            with node_errors("Reading chain id"):
                self._chain_id = self.web3.eth.chain_id
        return self._chain_id

    @property
    def create2_factory(self) -> ChecksumAddress:
        return self._create2_factory

    def _broadcast(self, sender: ChecksumAddress, tx: dict) -> HexBytes:
        tx = dict(tx)
        tx["from"] = sender
        wallet = self.wallet
        try:
            if wallet is not None and sender == wallet.address:
                if wallet.current_nonce is None:
                    wallet.sync_nonce(self.web3)
                if "gas" not in tx:
                    tx["gas"] = int(self.web3.eth.estimate_gas(tx) * self.gas_margin)
                tx["chainId"] = self.chain_id
                HotWallet.fill_in_gas_price(self.web3, tx)
                signed = wallet.sign_transaction_with_new_nonce(tx)
                try:
                    return HexBytes(self.web3.eth.send_raw_transaction(signed.raw_transaction))
                except (Web3Exception, ValueError, OSError):
                    # Nonce was not consumed
                    wallet.current_nonce = None
                    raise
            return HexBytes(self.web3.eth.send_transaction(tx))
        except (ContractLogicError, TransactionFailed) as e:
            # Gas estimation hit a revert, eth-tester raises TransactionFailed
            raise CallReverted(f"Transaction from {sender} to {tx.get('to', 'contract creation')} would revert: {e}", reason=str(e.args[0])) from e
        except (Web3Exception, ValueError, OSError) as e:
            raise EnvironmentFailure(f"Could not broadcast transaction from {sender}: {e}") from e

    def _wait(self, tx_hash: HexBytes, description: str) -> dict:
        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info("Waiting %s to confirm: %s, timeout is %s", description, tx_hash_hex, self.confirmation_timeout)
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.confirmation_timeout.total_seconds(),
                poll_latency=self.poll_delay.total_seconds(),
            )
        except TimeExhausted as e:
            raise ConfirmationTimedOut(f"{description} {tx_hash_hex} not confirmed in {self.confirmation_timeout}. It may still land.", tx_hash=tx_hash_hex) from e
        except OSError as e:
            raise EnvironmentFailure(f"Lost connection while waiting {description} {tx_hash_hex}: {e}", tx_hash=tx_hash_hex) from e

        if receipt["status"] == 0:
            try:
                reason = fetch_transaction_revert_reason(self.web3, tx_hash)
            except (Web3Exception, ValueError, OSError) as e:
                logger.warning("Could not replay %s for its revert reason: %s", tx_hash_hex, e)
                reason = UNKNOWN_REVERT_REASON
            raise CallReverted(f"{description} {tx_hash_hex} reverted: {reason}", reason=reason, tx_hash=tx_hash_hex)

        logger.info("%s %s confirmed in block %d, gas used %d", description, tx_hash_hex, receipt["blockNumber"], receipt["gasUsed"])
        return receipt

    def submit_creation(self, deployer: HexAddress, init_code: bytes, salt: Salt | None = None) -> CreationReceipt:
        deployer = Web3.to_checksum_address(deployer)
        init_code = bytes(init_code)
        assert len(init_code) > 0, "Empty init code"

        if salt is None:
            tx_hash = self._broadcast(deployer, {"data": init_code})
            receipt = self._wait(tx_hash, "Contract creation")
            address = Web3.to_checksum_address(receipt["contractAddress"])
        else:
            if not self.has_code(self.create2_factory):
                raise EnvironmentFailure(f"No CREATE2 factory at {self.create2_factory} on chain {self.chain_id}")

            address = predict_create2_address(self.create2_factory, salt, compute_init_code_hash(init_code))
            tx_hash = self._broadcast(deployer, {"to": self.create2_factory, "data": salt_to_bytes(salt) + init_code})
            self._wait(tx_hash, "CREATE2 deployment")
            if not self.has_code(address):
                raise EnvironmentFailure(f"CREATE2 deployment confirmed, but no code at {address}", tx_hash=Web3.to_hex(tx_hash))

        logger.info("Contract deployed at %s by %s", address, deployer)
        return CreationReceipt(address=address, tx_hash=tx_hash)

    def submit_upgrade_and_initialize(self, sender: HexAddress, proxy: HexAddress, implementation: HexAddress, payload: bytes) -> HexBytes:
        sender = Web3.to_checksum_address(sender)
        proxy = Web3.to_checksum_address(proxy)
        data = encode_with_signature(UPGRADE_SIGNATURE, [implementation, bytes(payload)])
        tx_hash = self._broadcast(sender, {"to": proxy, "data": data})
        self._wait(tx_hash, f"Upgrade of {proxy}")
        return tx_hash

    def read_proxy_state(self, proxy: HexAddress) -> ProxySnapshot:
        proxy = Web3.to_checksum_address(proxy)
        if not self.has_code(proxy):
            return ProxySnapshot(proxy=proxy)

        with node_errors(f"Reading proxy storage of {proxy}"):
            implementation_slot = self.web3.eth.get_storage_at(proxy, IMPLEMENTATION_SLOT)
            initializable_slot = self.web3.eth.get_storage_at(proxy, INITIALIZABLE_SLOT)
        initialized_version = int.from_bytes(bytes(initializable_slot)[-8:], "big")

        return ProxySnapshot(
            proxy=proxy,
            implementation=Web3.to_checksum_address(bytes(implementation_slot)[-20:]),
            initialized=initialized_version != 0,
            has_code=True,
        )

    def get_code(self, address: HexAddress) -> bytes:
        with node_errors(f"Reading code at {address}"):
            return bytes(self.web3.eth.get_code(Web3.to_checksum_address(address)))

    def get_nonce(self, address: HexAddress) -> int:
        with node_errors(f"Reading nonce of {address}"):
            return self.web3.eth.get_transaction_count(Web3.to_checksum_address(address))
