"""Reusable deployment step builders.

Deployment profiles are composed from these instead of writing a
new monolithic deployment script for each variation.

- :py:func:`deploy_contract_step` - plain contract, optionally at a CREATE2 salt
- :py:func:`placeholder_proxy_step` - proxy shell whose address later contracts refer to
- :py:func:`mined_hook_step` - contract at a salt-mined address satisfying a bit-pattern
- :py:func:`finalize_proxy_step` - one-time upgrade-and-initialize of the placeholder proxy

Constructor arguments refer to other steps and network roles with :py:class:`Ref`:

.. code-block:: python

    hook = ContractSpec(
        "DopplerHook",
        constructor_types=["address", "address"],
        constructor_args=[Ref("poolManager"), Ref("factory_proxy")],
    )

Salted steps check the predicted address for existing code first. If a previous
run submitted the transaction but timed out waiting for the confirmation,
we adopt the contract instead of deploying it again.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from eth_typing import ChecksumAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_bootstrap.abi import ContractArtifact, encode_with_signature
from eth_bootstrap.create2 import compute_init_code_hash
from eth_bootstrap.environment import CreationReceipt
from eth_bootstrap.errors import EnvironmentFailure
from eth_bootstrap.runner import DeploymentStep, StepContext, StepResult
from eth_bootstrap.salt import AddressConstraint, DEFAULT_MAX_ATTEMPTS

logger = logging.getLogger(__name__)


#: ``contract name -> artifact``, usually ``functools.partial(get_artifact, out_folder)``
ArtifactLoader = Callable[[str], ContractArtifact]


@dataclass(frozen=True)
class Ref:
    """Reference to the address of an earlier step or a network role."""

    name: str

    def __str__(self):
        return f"@{self.name}"


#: Special reference to the deployer account itself, not a dependency
DEPLOYER = Ref("deployer")


def parse_arg(value: Any) -> Any:
    """Parse a constructor argument from a JSON settings file.

    Strings starting with ``@`` are references, ``@deployer`` is the deployer account.
    """
    if isinstance(value, str) and value.startswith("@"):
        return DEPLOYER if value == "@deployer" else Ref(value[1:])
    return value


def _get_refs(args: list) -> list[str]:
    return [a.name for a in args if isinstance(a, Ref) and a != DEPLOYER]


def _resolve_args(args: list, context: StepContext) -> list:
    resolved = []
    for a in args:
        if a == DEPLOYER:
            resolved.append(context.deployer)
        elif isinstance(a, Ref):
            resolved.append(context.get(a.name))
        else:
            resolved.append(a)
    return resolved


@dataclass(slots=True)
class ContractSpec:
    """Which artifact to deploy and with what constructor arguments."""

    #: Contract name in the compiler output
    artifact: str

    #: Solidity types. ``None`` to read them from the artifact ABI.
    constructor_types: list[str] | None = None

    #: Values or :py:class:`Ref` references
    constructor_args: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ContractSpec":
        return cls(
            artifact=data["artifact"],
            constructor_types=data.get("constructor_types"),
            constructor_args=[parse_arg(a) for a in data.get("constructor_args", [])],
        )

    def get_dependencies(self) -> list[str]:
        return _get_refs(self.constructor_args)

    def build_init_code(self, load_artifact: ArtifactLoader, context: StepContext) -> HexBytes:
        artifact = load_artifact(self.artifact)
        return artifact.build_init_code(_resolve_args(self.constructor_args, context), self.constructor_types)


@dataclass(slots=True)
class InitializerSpec:
    """Initializer call run when a proxy is finalised."""

    #: Solidity signature, e.g. ``initialize(address,address)``
    signature: str

    #: Values or :py:class:`Ref` references
    args: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "InitializerSpec":
        return cls(
            signature=data["signature"],
            args=[parse_arg(a) for a in data.get("args", [])],
        )

    def get_dependencies(self) -> list[str]:
        return _get_refs(self.args)

    def encode(self, context: StepContext) -> bytes:
        return encode_with_signature(self.signature, _resolve_args(self.args, context))


def _unique(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))


def _receipt_outputs(receipt: CreationReceipt | None) -> dict[str, str]:
    if receipt is None or receipt.tx_hash is None:
        return {}
    return {"tx_hash": Web3.to_hex(receipt.tx_hash)}


def _check_landed(name: str, receipt: CreationReceipt, predicted: ChecksumAddress):
    if receipt.address != predicted:
        raise EnvironmentFailure(f"Step {name}: contract landed at {receipt.address}, predicted {predicted}. Wrong CREATE2 factory?", tx_hash=Web3.to_hex(receipt.tx_hash) if receipt.tx_hash else None)


def deploy_salted(context: StepContext, init_code: bytes, salt: int) -> tuple[ChecksumAddress, CreationReceipt | None]:
    """Deploy through the CREATE2 factory unless the contract is already there.

    :return:
        Address and receipt. Receipt is ``None`` if an existing deployment was adopted.
    """
    environment = context.environment
    predicted = context.predictor.predict(environment.create2_factory, salt, compute_init_code_hash(init_code))

    if environment.has_code(predicted):
        logger.warning("Step %s: contract already deployed at %s by an earlier run, adopting it", context.step.name, predicted)
        return predicted, None

    receipt = environment.submit_creation(context.deployer, init_code, salt=salt)
    _check_landed(context.step.name, receipt, predicted)
    return predicted, receipt


def deploy_contract_step(
    name: str,
    spec: ContractSpec,
    load_artifact: ArtifactLoader,
    salt: int | None = 0,
    description: str = "",
) -> DeploymentStep:
    """Deploy a contract.

    :param salt:
        CREATE2 salt. ``None`` for a plain CREATE transaction,
        which cannot be recovered after a confirmation timeout.
    """

    def deploy(context: StepContext) -> StepResult:
        init_code = spec.build_init_code(load_artifact, context)
        if salt is None:
            receipt = context.environment.submit_creation(context.deployer, init_code)
            return StepResult(receipt.address, _receipt_outputs(receipt))

        address, receipt = deploy_salted(context, init_code, salt)
        outputs = {"salt": str(salt), **_receipt_outputs(receipt)}
        return StepResult(address, outputs)

    return DeploymentStep(
        name=name,
        deploy=deploy,
        dependencies=spec.get_dependencies(),
        description=description or f"Deploy {spec.artifact}",
    )


def placeholder_proxy_step(
    name: str,
    spec: ContractSpec,
    load_artifact: ArtifactLoader,
    salt: int | None = 0,
    description: str = "",
) -> DeploymentStep:
    """Deploy the proxy shell without a real implementation.

    Its address is consumed by later steps before the implementation exists.
    """

    def deploy(context: StepContext) -> StepResult:
        init_code = spec.build_init_code(load_artifact, context)
        bootstrapper = context.bootstrapper
        predicted = bootstrapper.predict_placeholder_address(context.deployer, init_code, salt)

        if salt is not None and context.environment.has_code(predicted):
            logger.warning("Step %s: proxy already deployed at %s by an earlier run, adopting it", name, predicted)
            bootstrapper.sync(predicted)
            return StepResult(predicted, {"salt": str(salt)})

        proxy = bootstrapper.deploy_placeholder(context.deployer, init_code, salt=salt)
        if proxy != predicted:
            raise EnvironmentFailure(f"Step {name}: proxy landed at {proxy}, predicted {predicted}")

        outputs = {"salt": str(salt)} if salt is not None else {}
        return StepResult(proxy, outputs)

    return DeploymentStep(
        name=name,
        deploy=deploy,
        dependencies=spec.get_dependencies(),
        description=description or f"Deploy placeholder proxy {spec.artifact}",
    )


def mined_hook_step(
    name: str,
    spec: ContractSpec,
    load_artifact: ArtifactLoader,
    constraint: AddressConstraint,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    start_salt: int = 0,
    description: str = "",
) -> DeploymentStep:
    """Deploy a contract at a salt-mined address.

    The constructor arguments usually embed forward references, e.g. the placeholder proxy,
    so the init code and the search are only known once those steps have completed.
    """

    def deploy(context: StepContext) -> StepResult:
        init_code = spec.build_init_code(load_artifact, context)
        candidate = context.salt_engine.find_salt(
            context.environment.create2_factory,
            bytes(init_code),
            constraint,
            max_attempts=max_attempts,
            start_salt=start_salt,
        )

        address, receipt = deploy_salted(context, init_code, candidate.salt)
        outputs = {
            "salt": str(candidate.salt),
            "init_code_hash": Web3.to_hex(candidate.init_code_hash),
            "constraint": str(constraint),
            **_receipt_outputs(receipt),
        }
        return StepResult(address, outputs)

    return DeploymentStep(
        name=name,
        deploy=deploy,
        dependencies=spec.get_dependencies(),
        description=description or f"Mine salt and deploy {spec.artifact}",
    )


def finalize_proxy_step(
    name: str,
    proxy_step: str,
    implementation_step: str,
    initializer: InitializerSpec,
    description: str = "",
) -> DeploymentStep:
    """Upgrade the placeholder proxy to the real implementation and initialise it.

    The manifest entry address is the proxy, ``outputs["implementation"]`` the implementation.
    """

    def deploy(context: StepContext) -> StepResult:
        proxy = context.get(proxy_step)
        implementation = context.get(implementation_step)
        payload = initializer.encode(context)
        outputs = {
            "implementation": implementation,
            "initializer_hash": Web3.to_hex(Web3.keccak(payload)),
        }

        if context.bootstrapper.is_finalized_with(proxy, implementation):
            logger.warning("Step %s: proxy %s already finalised to %s by an earlier run, adopting it", name, proxy, implementation)
            return StepResult(proxy, outputs)

        tx_hash = context.bootstrapper.finalize(proxy, implementation, payload)
        if tx_hash:
            outputs["tx_hash"] = Web3.to_hex(tx_hash)
        return StepResult(proxy, outputs)

    return DeploymentStep(
        name=name,
        deploy=deploy,
        dependencies=_unique([proxy_step, implementation_step] + initializer.get_dependencies()),
        description=description or f"Finalise {proxy_step} to {implementation_step}",
    )
