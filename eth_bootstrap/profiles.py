"""Named deployment profiles.

A profile is a declarative, ordered list of :py:class:`eth_bootstrap.runner.DeploymentStep`
built from the reusable builders in :py:mod:`eth_bootstrap.steps`.

``isolated`` - the full system, six steps:

1. ``factory_proxy`` - placeholder proxy, its address is needed by the hook
2. ``hook`` - hook at a salt-mined address encoding its permission flags
3. ``token_implementation``
4. ``governance_implementation``
5. ``factory_implementation`` - refers to the hook and the implementations
6. ``finalize_factory_proxy`` - upgrade-and-initialize the proxy to the factory implementation

``implementations`` - only steps 3 and 4.

``custom-factory`` - the factory with implementations that already exist on the chain,
given as ``implementation.token`` and ``implementation.governance`` network roles.

Contract names and constructor arguments are defaults. Override them with
:py:class:`ProfileSettings`, or from a JSON file with :py:meth:`ProfileSettings.from_dict`.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Callable

from eth_bootstrap.errors import ConfigurationError
from eth_bootstrap.hook_flags import HookFlagConstraint, get_hook_flags
from eth_bootstrap.runner import DeploymentStep, get_required_roles
from eth_bootstrap.salt import DEFAULT_MAX_ATTEMPTS
from eth_bootstrap.steps import (
    DEPLOYER,
    ArtifactLoader,
    ContractSpec,
    InitializerSpec,
    Ref,
    deploy_contract_step,
    finalize_proxy_step,
    mined_hook_step,
    placeholder_proxy_step,
)

logger = logging.getLogger(__name__)


#: Permissions of the hook we deploy by default
DEFAULT_HOOK_PERMISSIONS = [
    "beforeInitialize",
    "afterInitialize",
    "beforeAddLiquidity",
    "beforeSwap",
    "afterSwap",
    "beforeDonate",
]

#: Default contracts of the isolated system.
#:
#: The proxy is deployed with the deployer as its admin and no implementation.
DEFAULT_CONTRACTS = {
    "proxy": ContractSpec("FactoryProxy", ["address"], [DEPLOYER]),
    "hook": ContractSpec("DopplerHook", ["address", "address"], [Ref("poolManager"), Ref("factory_proxy")]),
    "token_implementation": ContractSpec("TokenImplementation", ["address"], [Ref("airlock")]),
    "governance_implementation": ContractSpec("GovernanceImplementation", ["address"], [Ref("airlock")]),
    "factory_implementation": ContractSpec(
        "FactoryImplementation",
        ["address", "address", "address", "address"],
        [Ref("hook"), Ref("token_implementation"), Ref("governance_implementation"), Ref("airlock")],
    ),
}

#: Factory implementation of the custom-factory profile uses the existing implementations
CUSTOM_FACTORY_IMPLEMENTATION = ContractSpec(
    "FactoryImplementation",
    ["address", "address", "address", "address"],
    [Ref("hook"), Ref("implementation.token"), Ref("implementation.governance"), Ref("airlock")],
)

#: Run on the proxy when it is finalised
DEFAULT_INITIALIZER = InitializerSpec("initialize(address,address)", [DEPLOYER, Ref("router")])


@dataclass(slots=True)
class ProfileSettings:
    """Tunables of deployment profiles."""

    #: Slot name -> contract. Missing slots use :py:data:`DEFAULT_CONTRACTS`.
    contracts: dict[str, ContractSpec] = field(default_factory=dict)

    #: Proxy initializer
    initializer: InitializerSpec = field(default_factory=lambda: copy.deepcopy(DEFAULT_INITIALIZER))

    #: Hook permissions to encode in the hook address
    hook_permissions: list[str] = field(default_factory=lambda: list(DEFAULT_HOOK_PERMISSIONS))

    #: Salt search budget
    max_salt_attempts: int = DEFAULT_MAX_ATTEMPTS

    #: Where the salt search starts
    start_salt: int = 0

    #: CREATE2 salt for the proxy, ``None`` for nonce based deployment
    proxy_salt: int | None = 0

    #: CREATE2 salt for implementations, ``None`` for nonce based deployment
    implementation_salt: int | None = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ProfileSettings":
        """Read settings from a parsed JSON file.

        Constructor arguments starting with ``@`` are references, see :py:func:`eth_bootstrap.steps.parse_arg`.
        """
        settings = cls()
        settings.contracts = {slot: ContractSpec.from_dict(c) for slot, c in data.get("contracts", {}).items()}
        if "initializer" in data:
            settings.initializer = InitializerSpec.from_dict(data["initializer"])
        for key in ("hook_permissions", "max_salt_attempts", "start_salt", "proxy_salt", "implementation_salt"):
            if key in data:
                setattr(settings, key, data[key])
        return settings

    def get_contract(self, slot: str, default: ContractSpec | None = None) -> ContractSpec:
        spec = self.contracts.get(slot) or default or DEFAULT_CONTRACTS[slot]
        return copy.deepcopy(spec)

    def get_hook_constraint(self) -> HookFlagConstraint:
        try:
            return HookFlagConstraint(get_hook_flags(self.hook_permissions))
        except ValueError as e:
            raise ConfigurationError(str(e)) from e


def _proxy_and_hook(load_artifact: ArtifactLoader, settings: ProfileSettings) -> list[DeploymentStep]:
    return [
        placeholder_proxy_step("factory_proxy", settings.get_contract("proxy"), load_artifact, salt=settings.proxy_salt),
        mined_hook_step(
            "hook",
            settings.get_contract("hook"),
            load_artifact,
            constraint=settings.get_hook_constraint(),
            max_attempts=settings.max_salt_attempts,
            start_salt=settings.start_salt,
        ),
    ]


def _implementations(load_artifact: ArtifactLoader, settings: ProfileSettings) -> list[DeploymentStep]:
    return [
        deploy_contract_step("token_implementation", settings.get_contract("token_implementation"), load_artifact, salt=settings.implementation_salt),
        deploy_contract_step("governance_implementation", settings.get_contract("governance_implementation"), load_artifact, salt=settings.implementation_salt),
    ]


def _factory(load_artifact: ArtifactLoader, settings: ProfileSettings, default: ContractSpec | None = None) -> list[DeploymentStep]:
    return [
        deploy_contract_step("factory_implementation", settings.get_contract("factory_implementation", default), load_artifact, salt=settings.implementation_salt),
        finalize_proxy_step("finalize_factory_proxy", "factory_proxy", "factory_implementation", copy.deepcopy(settings.initializer)),
    ]


def build_isolated_profile(load_artifact: ArtifactLoader, settings: ProfileSettings) -> list[DeploymentStep]:
    """The full six step system."""
    return _proxy_and_hook(load_artifact, settings) + _implementations(load_artifact, settings) + _factory(load_artifact, settings)


def build_implementations_profile(load_artifact: ArtifactLoader, settings: ProfileSettings) -> list[DeploymentStep]:
    """Only the token and governance implementations."""
    return _implementations(load_artifact, settings)


def build_custom_factory_profile(load_artifact: ArtifactLoader, settings: ProfileSettings) -> list[DeploymentStep]:
    """Proxy, hook and factory wired to implementations given in the network profile."""
    return _proxy_and_hook(load_artifact, settings) + _factory(load_artifact, settings, default=CUSTOM_FACTORY_IMPLEMENTATION)


#: Profile name -> (builder, description)
DEPLOYMENT_PROFILES: dict[str, tuple[Callable[[ArtifactLoader, ProfileSettings], list[DeploymentStep]], str]] = {
    "isolated": (build_isolated_profile, "Full isolated system: proxy, hook, implementations, factory"),
    "implementations": (build_implementations_profile, "Implementation contracts only"),
    "custom-factory": (build_custom_factory_profile, "Factory using existing implementations from the network profile"),
}


def build_deployment_profile(name: str, load_artifact: ArtifactLoader, settings: ProfileSettings | None = None) -> list[DeploymentStep]:
    """Build the step list of a named profile.

    :raise KeyError:
        Unknown profile
    """
    if name not in DEPLOYMENT_PROFILES:
        raise KeyError(f"Unknown deployment profile {name}, we have {', '.join(DEPLOYMENT_PROFILES)}")

    builder, _ = DEPLOYMENT_PROFILES[name]
    steps = builder(load_artifact, settings or ProfileSettings())
    logger.info("Deployment profile %s has steps: %s", name, ", ".join(s.name for s in steps))
    return steps


def get_profile_steps(name: str, settings: ProfileSettings | None = None) -> list[DeploymentStep]:
    """Build a profile for listing only.

    Artifacts are loaded when a step runs, so the steps can be inspected without a compiler output folder.
    """
    return build_deployment_profile(name, _no_artifacts, settings)


def get_profile_required_roles(name: str, settings: ProfileSettings | None = None) -> list[str]:
    """Network roles a profile needs, without loading any artifacts."""
    return sorted(get_required_roles(get_profile_steps(name, settings)))


def _no_artifacts(name: str):
    raise AssertionError(f"Artifacts are not loaded when listing roles, asked for {name}")
