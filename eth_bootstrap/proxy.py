"""Placeholder proxy deployment and one-time upgrade-and-initialize.

The proxy is deployed first, pointing to no real implementation, so that
its stable address can be baked into contracts deployed later (the hook).
Once the real implementation exists, one ``upgradeToAndCall()`` points
the proxy to it and runs the initializer in the same transaction.

Proxy life cycle:

.. code-block:: text

    Unset -> PlaceholderDeployed -> Finalized

``Finalized`` is terminal. Finalizing twice, or deploying a placeholder where a finalised
proxy lives, raises :py:class:`eth_bootstrap.errors.AlreadyInitialized` before anything is sent to the chain.
"""

import enum
import logging
from dataclasses import dataclass

from eth_typing import ChecksumAddress, HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_bootstrap.abi import ZERO_ADDRESS, is_zero_address
from eth_bootstrap.create2 import AddressPredictor, Salt, compute_init_code_hash
from eth_bootstrap.environment import ExecutionEnvironment
from eth_bootstrap.errors import AlreadyInitialized, CallReverted, InitializationRejected, ProxyNotDeployed

logger = logging.getLogger(__name__)


class ProxyState(enum.Enum):
    """Where a proxy is in its life cycle."""

    unset = "unset"
    placeholder_deployed = "placeholder_deployed"
    finalized = "finalized"


@dataclass(slots=True)
class ProxyInitializationRecord:
    """What we know about a proxy we manage."""

    proxy: ChecksumAddress

    #: Current implementation, zero for a placeholder
    implementation: ChecksumAddress = ZERO_ADDRESS

    #: Keccak of the initializer call data used in finalisation.
    #:
    #: ``None`` if we did not finalise the proxy in this process (read back from the chain).
    initializer_hash: HexBytes | None = None

    #: Flips to True exactly once
    initialized: bool = False

    def mark_initialized(self, implementation: ChecksumAddress, initializer_hash: HexBytes | None):
        if self.initialized:
            raise AlreadyInitialized(self.proxy)
        self.implementation = implementation
        self.initializer_hash = initializer_hash
        self.initialized = True

    @property
    def state(self) -> ProxyState:
        return ProxyState.finalized if self.initialized else ProxyState.placeholder_deployed


class ProxyBootstrapper:
    """Deploy placeholder proxies and finalise them exactly once.

    Records are kept per process and hydrated from the chain for proxies
    deployed by an earlier run.
    """

    def __init__(self, environment: ExecutionEnvironment, admin: HexAddress, predictor: AddressPredictor | None = None):
        """
        :param environment:
            Where we deploy

        :param admin:
            Account authorised to upgrade the proxies
        """
        assert isinstance(environment, ExecutionEnvironment), f"Got {type(environment)}"
        self.environment = environment
        self.admin = Web3.to_checksum_address(admin)
        self.predictor = predictor or AddressPredictor()
        self.records: dict[ChecksumAddress, ProxyInitializationRecord] = {}

    def __repr__(self):
        return f"<ProxyBootstrapper admin:{self.admin} proxies:{len(self.records)}>"

    def predict_placeholder_address(self, deployer: HexAddress, proxy_init_code: bytes, salt: Salt | None = None) -> ChecksumAddress:
        """Where :py:meth:`deploy_placeholder` would put the proxy.

        - Salted: CREATE2 through the environment CREATE2 factory
        - Unsalted: CREATE with the current deployer nonce
        """
        if salt is None:
            return self.predictor.predict(deployer, self.environment.get_nonce(deployer))
        return self.predictor.predict(self.environment.create2_factory, salt, compute_init_code_hash(proxy_init_code))

    def deploy_placeholder(self, deployer: HexAddress, proxy_init_code: bytes, salt: Salt | None = None) -> ChecksumAddress:
        """Deploy a proxy shell without a real implementation.

        :param proxy_init_code:
            Proxy bytecode with constructor arguments pointing to a zero or placeholder implementation

        :param salt:
            Give to make the proxy address independent of the deployer nonce

        :return:
            Proxy address

        :raise AlreadyInitialized:
            A finalised proxy already lives at the address. Nothing is sent.
        """
        predicted = self.predict_placeholder_address(deployer, proxy_init_code, salt)
        existing = self.get_record(predicted)
        if existing is not None and existing.initialized:
            raise AlreadyInitialized(predicted)

        receipt = self.environment.submit_creation(deployer, proxy_init_code, salt=salt)
        proxy = receipt.address
        self.records.setdefault(proxy, ProxyInitializationRecord(proxy=proxy))
        logger.info("Placeholder proxy deployed at %s", proxy)
        return proxy

    def sync(self, proxy: HexAddress) -> ProxyInitializationRecord | None:
        """Read proxy state from the chain into our record.

        :return:
            The record, or ``None`` if there is no contract at the address
        """
        proxy = Web3.to_checksum_address(proxy)
        snapshot = self.environment.read_proxy_state(proxy)
        if not snapshot.has_code:
            self.records.pop(proxy, None)
            return None

        record = self.records.get(proxy)
        if record is None:
            record = ProxyInitializationRecord(proxy=proxy)
            self.records[proxy] = record

        if snapshot.initialized and not record.initialized:
            record.mark_initialized(snapshot.implementation, None)

        return record

    def get_record(self, proxy: HexAddress) -> ProxyInitializationRecord | None:
        proxy = Web3.to_checksum_address(proxy)
        return self.records.get(proxy) or self.sync(proxy)

    def get_state(self, proxy: HexAddress) -> ProxyState:
        """Read-only life cycle query."""
        record = self.get_record(proxy)
        if record is None:
            return ProxyState.unset
        return record.state

    def is_finalized_with(self, proxy: HexAddress, implementation: HexAddress) -> bool:
        """Check if an earlier run already finalised the proxy to this implementation.

        Always reads the chain, used for recovering after a confirmation timeout.
        """
        record = self.sync(proxy)
        return record is not None and record.initialized and record.implementation == Web3.to_checksum_address(implementation)

    def finalize(self, proxy: HexAddress, implementation: HexAddress, initializer_payload: bytes) -> HexBytes | None:
        """Upgrade the proxy to the real implementation and initialise it.

        :param initializer_payload:
            Call data for the implementation initializer, e.g. from :py:func:`eth_bootstrap.abi.encode_with_signature`

        :return:
            Transaction hash, if the environment gives one

        :raise AlreadyInitialized:
            Proxy has been finalised already. Nothing is sent.

        :raise InitializationRejected:
            The call reverted. The record stays unmarked so the call can be retried with corrected inputs.

        :raise ProxyNotDeployed:
            No proxy at the address
        """
        proxy = Web3.to_checksum_address(proxy)
        implementation = Web3.to_checksum_address(implementation)
        assert not is_zero_address(implementation), "Cannot finalise to the zero implementation"

        record = self.get_record(proxy)
        if record is None:
            raise ProxyNotDeployed(proxy)

        if record.initialized:
            raise AlreadyInitialized(proxy)

        logger.info("Finalising proxy %s to implementation %s, initializer payload %d bytes", proxy, implementation, len(initializer_payload))

        try:
            tx_hash = self.environment.submit_upgrade_and_initialize(self.admin, proxy, implementation, initializer_payload)
        except CallReverted as e:
            raise InitializationRejected(proxy, e.reason) from e

        record.mark_initialized(implementation, HexBytes(Web3.keccak(initializer_payload)))
        logger.info("Proxy %s finalised", proxy)
        return tx_hash
