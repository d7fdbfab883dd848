"""The execution environment seam.

The orchestrator never talks to a blockchain node directly. It talks to
an :py:class:`ExecutionEnvironment` that can

- submit a contract creation, optionally pinned to a CREATE2 salt
- submit an upgrade-and-initialize call to a proxy
- read back proxy state and contract code

Implementations

- :py:class:`eth_bootstrap.web3_environment.Web3ExecutionEnvironment` for real chains and Anvil
- :py:class:`eth_bootstrap.testing.SimulatedEnvironment` for dry runs and unit tests

All submission methods block until the transaction is confirmed or definitely failed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from eth_typing import ChecksumAddress, HexAddress
from hexbytes import HexBytes

from eth_bootstrap.abi import ZERO_ADDRESS
from eth_bootstrap.create2 import DETERMINISTIC_DEPLOYMENT_PROXY, Salt


@dataclass(slots=True, frozen=True)
class CreationReceipt:
    """Outcome of a confirmed contract creation."""

    #: Where the contract landed
    address: ChecksumAddress

    #: Creation transaction, if the environment has such a thing
    tx_hash: HexBytes | None = None


@dataclass(slots=True, frozen=True)
class ProxySnapshot:
    """Read-only view of an upgradeable proxy."""

    proxy: ChecksumAddress

    #: ERC-1967 implementation slot. Zero address for a placeholder.
    implementation: ChecksumAddress = ZERO_ADDRESS

    #: Has the implementation initializer run
    initialized: bool = False

    #: Is there a contract at the proxy address
    has_code: bool = False


class ExecutionEnvironment(ABC):
    """Abstract base class for where contracts get deployed."""

    @property
    @abstractmethod
    def chain_id(self) -> int:
        """Chain id of the target network."""

    @property
    def create2_factory(self) -> ChecksumAddress:
        """Contract executing CREATE2 for salted creations.

        The predicted address of a salted creation is derived from this, not from the deployer account.
        """
        return DETERMINISTIC_DEPLOYMENT_PROXY

    @abstractmethod
    def submit_creation(self, deployer: HexAddress, init_code: bytes, salt: Salt | None = None) -> CreationReceipt:
        """Deploy a contract and wait for the confirmation.

        :param deployer:
            Account paying for and signing the transaction

        :param init_code:
            Creation payload: bytecode and constructor arguments

        :param salt:
            If given, deploy through :py:attr:`create2_factory` with this salt.
            Otherwise a plain CREATE transaction using the deployer nonce.

        :raise eth_bootstrap.errors.EnvironmentFailure:
            Rejected, reverted or not confirmed in time
        """

    @abstractmethod
    def submit_upgrade_and_initialize(self, sender: HexAddress, proxy: HexAddress, implementation: HexAddress, payload: bytes) -> HexBytes | None:
        """Point a proxy to a new implementation and run its initializer atomically.

        :return:
            Transaction hash, if any

        :raise eth_bootstrap.errors.CallReverted:
            The call reverted. Carries the revert reason.
        """

    @abstractmethod
    def read_proxy_state(self, proxy: HexAddress) -> ProxySnapshot:
        """Read the current implementation and initialization state of a proxy."""

    @abstractmethod
    def get_code(self, address: HexAddress) -> bytes:
        """Get the deployed runtime bytecode, empty if there is no contract."""

    @abstractmethod
    def get_nonce(self, address: HexAddress) -> int:
        """Transaction count of an account."""

    def has_code(self, address: HexAddress) -> bool:
        return len(self.get_code(address)) > 0
