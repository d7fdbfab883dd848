"""In-memory execution environment for dry runs and unit tests.

- Follows the EVM address derivation rules, so predicted addresses match
- Does not execute any bytecode: a "contract" is just its init code stored at an address
- Any contract can act as a proxy: upgrade-and-initialize sets its implementation once
- Failures can be injected to simulate rejected transactions and lost confirmations

Example:

.. code-block:: python

    environment = SimulatedEnvironment(chain_id=8453)
    runner = DeploymentStepRunner(environment, network, deployer)
"""

import logging
from dataclasses import dataclass

from eth_typing import ChecksumAddress, HexAddress
from eth_utils import keccak, to_canonical_address
from hexbytes import HexBytes
from web3 import Web3

from eth_bootstrap.abi import ZERO_ADDRESS
from eth_bootstrap.create2 import Salt, compute_init_code_hash, predict_create2_address, predict_create_address
from eth_bootstrap.environment import CreationReceipt, ExecutionEnvironment, ProxySnapshot
from eth_bootstrap.errors import CallReverted, ConfirmationTimedOut, EnvironmentFailure

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SimulatedProxy:
    implementation: ChecksumAddress = ZERO_ADDRESS
    initialized: bool = False
    initializer_payload: bytes = b""


@dataclass(slots=True, frozen=True)
class Submission:
    """A transaction the environment has seen."""

    kind: str
    sender: ChecksumAddress
    tx_hash: HexBytes
    target: ChecksumAddress | None = None


class SimulatedEnvironment(ExecutionEnvironment):
    """Pretend blockchain living in the process memory."""

    def __init__(self, chain_id: int = 31337):
        self._chain_id = chain_id
        self.nonces: dict[ChecksumAddress, int] = {}
        self.code: dict[ChecksumAddress, bytes] = {}
        self.proxies: dict[ChecksumAddress, SimulatedProxy] = {}

        #: All successfully applied transactions
        self.submissions: list[Submission] = []

        # Injected failures
        self._fail_next: EnvironmentFailure | None = None
        self._lose_next_confirmation = False
        self._revert_next_upgrade: str | None = None

        # The CREATE2 factory exists from the genesis
        self.code[self.create2_factory] = b"\x60\x00"

    def __repr__(self):
        return f"<SimulatedEnvironment chain:{self.chain_id} contracts:{len(self.code)} txs:{len(self.submissions)}>"

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def fail_next_submission(self, error: EnvironmentFailure | None = None):
        """Reject the next transaction before it is applied."""
        self._fail_next = error or EnvironmentFailure("Simulated rejection: insufficient funds for gas")

    def lose_next_confirmation(self):
        """Apply the next transaction but raise a confirmation timeout, like a slow node would."""
        self._lose_next_confirmation = True

    def revert_next_upgrade(self, reason: str):
        """Make the next upgrade-and-initialize revert with a reason."""
        self._revert_next_upgrade = reason

    def _allocate_nonce(self, sender: ChecksumAddress) -> int:
        nonce = self.nonces.get(sender, 0)
        self.nonces[sender] = nonce + 1
        return nonce

    def _begin(self, sender: HexAddress) -> ChecksumAddress:
        if self._fail_next is not None:
            error, self._fail_next = self._fail_next, None
            raise error
        return Web3.to_checksum_address(sender)

    def _finish(self, submission: Submission):
        self.submissions.append(submission)
        if self._lose_next_confirmation:
            self._lose_next_confirmation = False
            raise ConfirmationTimedOut(f"Simulated confirmation timeout for {Web3.to_hex(submission.tx_hash)}", tx_hash=Web3.to_hex(submission.tx_hash))

    @staticmethod
    def _make_tx_hash(sender: ChecksumAddress, nonce: int) -> HexBytes:
        return HexBytes(keccak(to_canonical_address(sender) + nonce.to_bytes(8, "big")))

    def submit_creation(self, deployer: HexAddress, init_code: bytes, salt: Salt | None = None) -> CreationReceipt:
        sender = self._begin(deployer)
        assert len(init_code) > 0, "Empty init code"

        if salt is None:
            nonce = self._allocate_nonce(sender)
            address = predict_create_address(sender, nonce)
        else:
            address = predict_create2_address(self.create2_factory, salt, compute_init_code_hash(init_code))
            if address in self.code:
                raise CallReverted(f"CREATE2 collision at {address}", reason="create2 failed")
            nonce = self._allocate_nonce(sender)

        self.code[address] = bytes(init_code)
        tx_hash = self._make_tx_hash(sender, nonce)
        logger.debug("Simulated creation of %s by %s", address, sender)
        self._finish(Submission("create", sender, tx_hash, address))
        return CreationReceipt(address=address, tx_hash=tx_hash)

    def submit_upgrade_and_initialize(self, sender: HexAddress, proxy: HexAddress, implementation: HexAddress, payload: bytes) -> HexBytes:
        sender = self._begin(sender)
        proxy = Web3.to_checksum_address(proxy)
        implementation = Web3.to_checksum_address(implementation)

        if self._revert_next_upgrade is not None:
            reason, self._revert_next_upgrade = self._revert_next_upgrade, None
            raise CallReverted(f"Upgrade of {proxy} reverted", reason=reason)

        if proxy not in self.code:
            raise CallReverted(f"No contract at {proxy}", reason="call to non-contract")

        if implementation not in self.code:
            raise CallReverted(f"No implementation at {implementation}", reason=f"ERC1967InvalidImplementation({implementation})")

        state = self.proxies.setdefault(proxy, SimulatedProxy())
        if state.initialized:
            raise CallReverted(f"Proxy {proxy} already initialized", reason="InvalidInitialization()")

        state.implementation = implementation
        state.initialized = True
        state.initializer_payload = bytes(payload)

        tx_hash = self._make_tx_hash(sender, self._allocate_nonce(sender))
        self._finish(Submission("upgrade", sender, tx_hash, proxy))
        return tx_hash

    def read_proxy_state(self, proxy: HexAddress) -> ProxySnapshot:
        proxy = Web3.to_checksum_address(proxy)
        state = self.proxies.get(proxy, SimulatedProxy())
        return ProxySnapshot(
            proxy=proxy,
            implementation=state.implementation,
            initialized=state.initialized,
            has_code=proxy in self.code,
        )

    def get_code(self, address: HexAddress) -> bytes:
        return self.code.get(Web3.to_checksum_address(address), b"")

    def get_nonce(self, address: HexAddress) -> int:
        return self.nonces.get(Web3.to_checksum_address(address), 0)
