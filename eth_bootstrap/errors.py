"""Exceptions raised by the bootstrap deployment machinery.

- Everything derives from :py:class:`BootstrapError`

- Nothing here is retried automatically. On-chain actions cost gas and
  are not idempotent at the transport layer, so the operator inspects
  the state and re-invokes the deployment

The CLI maps any :py:class:`BootstrapError` to a non-zero exit code.
"""


class BootstrapError(Exception):
    """Base class for all deployment orchestration errors."""


class ConfigurationError(BootstrapError):
    """Network profile or deployment settings are missing or invalid.

    Raised before any step runs, so nothing is ever partially applied.
    """


class UnsupportedNetwork(ConfigurationError):
    """We do not have a network profile for the given network identifier."""

    def __init__(self, network_id, known: list[str] | None = None):
        known_str = ", ".join(known or []) or "-"
        super().__init__(f"Unsupported network {network_id}. Known networks: {known_str}")
        self.network_id = network_id


class IncompleteNetworkProfile(ConfigurationError):
    """A role needed by the step list is missing from the network profile."""

    def __init__(self, network: str, role: str):
        super().__init__(f"Network profile {network} lacks role {role}")
        self.network = network
        self.role = role


class ManifestCorrupted(ConfigurationError):
    """The manifest file on the disk cannot be read back."""


class ManifestConflict(BootstrapError):
    """Attempt to overwrite an already completed manifest entry."""


class UnresolvedDependency(BootstrapError):
    """A step refers to a dependency nobody produces.

    This is a defect in the step list, not a runtime condition.
    """

    def __init__(self, step: str, dependency: str):
        super().__init__(f"Step {step} depends on {dependency}, which is neither a network role nor an earlier completed step")
        self.step = step
        self.dependency = dependency


class SaltSearchExhausted(BootstrapError):
    """No salt satisfied the address constraint within the search budget."""

    def __init__(self, attempts: int, start_salt: int):
        super().__init__(f"Salt search exhausted after {attempts:,} attempts starting from salt {start_salt}. Widen the budget or change the starting salt.")
        self.attempts = attempts
        self.start_salt = start_salt


class EnvironmentFailure(BootstrapError):
    """The execution environment rejected or failed a submission.

    E.g. the transaction reverted or the account ran out of gas money.
    """

    def __init__(self, msg: str, tx_hash: str | None = None):
        super().__init__(msg)
        self.tx_hash = tx_hash


class CallReverted(EnvironmentFailure):
    """A submitted transaction was mined but reverted.

    :py:attr:`reason` is the Solidity revert reason, if we could extract one.
    """

    def __init__(self, msg: str, reason: str, tx_hash: str | None = None):
        super().__init__(msg, tx_hash=tx_hash)
        self.reason = reason


class ConfirmationTimedOut(EnvironmentFailure):
    """We did not see a receipt in time.

    The transaction may still land. Re-invocation checks the chain state
    before submitting anything again.
    """


class StepFailed(BootstrapError):
    """A deployment step halted the run.

    The original exception is available as ``__cause__`` and :py:attr:`cause`.
    """

    def __init__(self, step: str, cause: Exception):
        super().__init__(f"Step {step} failed: {cause}")
        self.step = step
        self.cause = cause


class AlreadyInitialized(BootstrapError):
    """Proxy has already been finalised with upgrade-and-initialize."""

    def __init__(self, proxy: str):
        super().__init__(f"Proxy {proxy} is already initialized")
        self.proxy = proxy


class ProxyNotDeployed(BootstrapError):
    """Tried to finalise a proxy that does not exist on chain."""

    def __init__(self, proxy: str):
        super().__init__(f"No proxy contract at {proxy}")
        self.proxy = proxy


class InitializationRejected(BootstrapError):
    """Upgrade-and-initialize call reverted.

    :py:attr:`reason` carries the revert reason as received from the chain.
    """

    def __init__(self, proxy: str, reason: str):
        super().__init__(f"Initialization of proxy {proxy} rejected: {reason}")
        self.proxy = proxy
        self.reason = reason


class DeploymentCancelled(BootstrapError):
    """Abort was requested between steps or salt search batches."""
