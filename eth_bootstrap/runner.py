"""Run an ordered list of deployment steps against a manifest.

- Steps run one at a time in the declared order. Later steps consume
  addresses produced by earlier ones, so there is nothing to parallelise,
  and racing two deployments from the same account would break nonce-based
  address predictions

- A step whose idempotency key is already in the manifest is skipped.
  Re-running after a failure resumes from the first incomplete step

- The manifest is saved to the disk after each completed step

- There is no automatic retry. A failing step halts the run with
  :py:class:`eth_bootstrap.errors.StepFailed`

Example:

.. code-block:: python

    runner = DeploymentStepRunner(environment, network, deployer=wallet.address)
    steps = build_deployment_profile("isolated", artifacts, settings)
    manifest = DeploymentManifest.create_or_load(path, chain_id=network.chain_id, network=network.name, profile="isolated")
    runner.run(steps, manifest)
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from eth_typing import ChecksumAddress, HexAddress
from web3 import Web3
from web3.exceptions import Web3Exception

from eth_bootstrap.create2 import AddressPredictor
from eth_bootstrap.environment import ExecutionEnvironment
from eth_bootstrap.errors import BootstrapError, ConfigurationError, DeploymentCancelled, StepFailed, UnresolvedDependency
from eth_bootstrap.manifest import DeploymentManifest, ManifestEntry
from eth_bootstrap.network import NetworkConfigResolver, NetworkProfile
from eth_bootstrap.proxy import ProxyBootstrapper
from eth_bootstrap.salt import SaltSearchEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StepResult:
    """What a deploy function returns."""

    #: The main address produced
    address: ChecksumAddress

    #: Auxiliary outputs stored in the manifest, e.g. ``{"salt": "1234"}``
    outputs: dict[str, str] = field(default_factory=dict)


#: Deploy function signature
DeployFunc = Callable[["StepContext"], StepResult]


@dataclass(slots=True)
class DeploymentStep:
    """One node in the deployment DAG."""

    #: Unique step name, also the manifest key
    name: str

    #: Does the work. Must only use dependencies it declares.
    deploy: DeployFunc

    #: Names of earlier steps or network profile roles this step consumes
    dependencies: list[str] = field(default_factory=list)

    #: Skip key. Defaults to the step name.
    idempotency_key: str | None = None

    #: Shown in listings
    description: str = ""

    def __post_init__(self):
        if self.idempotency_key is None:
            self.idempotency_key = self.name

    def __repr__(self):
        return f"<DeploymentStep {self.name} deps:{self.dependencies}>"


@dataclass(slots=True)
class StepContext:
    """Everything a deploy function may use."""

    step: DeploymentStep

    #: Dependency name -> address
    inputs: dict[str, ChecksumAddress]

    #: Dependency step name -> auxiliary outputs of that step
    outputs: dict[str, dict[str, str]]

    network: NetworkProfile
    environment: ExecutionEnvironment
    deployer: ChecksumAddress
    predictor: AddressPredictor
    salt_engine: SaltSearchEngine
    bootstrapper: ProxyBootstrapper

    def get(self, name: str) -> ChecksumAddress:
        """Address of a declared dependency.

        :raise UnresolvedDependency:
            The step did not declare this dependency
        """
        try:
            return self.inputs[name]
        except KeyError:
            raise UnresolvedDependency(self.step.name, name) from None

    def get_output(self, step: str, key: str) -> str:
        """Auxiliary output of a declared dependency step."""
        try:
            return self.outputs[step][key]
        except KeyError:
            raise UnresolvedDependency(self.step.name, f"{step}.{key}") from None


def get_required_roles(steps: Iterable[DeploymentStep]) -> set[str]:
    """Dependencies that are not produced by any step must come from the network profile."""
    steps = list(steps)
    step_names = {s.name for s in steps}
    return {d for s in steps for d in s.dependencies if d not in step_names}


class DeploymentStepRunner:
    """Drive a deployment step list to completion."""

    def __init__(
        self,
        environment: ExecutionEnvironment,
        network: NetworkProfile,
        deployer: HexAddress,
        predictor: AddressPredictor | None = None,
        salt_engine: SaltSearchEngine | None = None,
        bootstrapper: ProxyBootstrapper | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """
        :param deployer:
            Account deploying the contracts and administering the proxies

        :param cancel_event:
            Set from another thread to abort between steps
        """
        assert isinstance(environment, ExecutionEnvironment), f"Got {type(environment)}"
        assert isinstance(network, NetworkProfile), f"Got {type(network)}"

        if environment.chain_id != network.chain_id:
            raise ConfigurationError(f"Network profile {network.name} is for chain {network.chain_id}, environment is chain {environment.chain_id}")

        self.environment = environment
        self.network = network
        self.deployer = Web3.to_checksum_address(deployer)
        self.predictor = predictor or AddressPredictor()
        self.cancel_event = cancel_event
        self.salt_engine = salt_engine or SaltSearchEngine(predictor=self.predictor, cancel_event=cancel_event)
        self.bootstrapper = bootstrapper or ProxyBootstrapper(environment, admin=self.deployer, predictor=self.predictor)

    def __repr__(self):
        return f"<DeploymentStepRunner {self.network.name} deployer:{self.deployer}>"

    def validate(self, steps: list[DeploymentStep]):
        """Pre-flight checks before touching the chain.

        :raise UnresolvedDependency:
            Duplicate step, or a step depends on a later step

        :raise eth_bootstrap.errors.IncompleteNetworkProfile:
            A role is missing from the network profile
        """
        step_names = {s.name for s in steps}
        seen_names = set()
        seen_keys = set()
        for step in steps:
            if step.name in seen_names:
                raise UnresolvedDependency(step.name, f"duplicate step {step.name}")
            if step.idempotency_key in seen_keys:
                raise UnresolvedDependency(step.name, f"duplicate idempotency key {step.idempotency_key}")

            for dep in step.dependencies:
                if dep in step_names and dep not in seen_names:
                    # Depends on itself or on a later step
                    raise UnresolvedDependency(step.name, dep)

            seen_names.add(step.name)
            seen_keys.add(step.idempotency_key)

        NetworkConfigResolver.validate(self.network, get_required_roles(steps))

    def resolve_inputs(
        self,
        step: DeploymentStep,
        manifest: DeploymentManifest,
        idempotency_keys: dict[str, str] | None = None,
    ) -> tuple[dict[str, ChecksumAddress], dict[str, dict[str, str]]]:
        """Resolve dependency addresses from the network profile and the manifest.

        :param idempotency_keys:
            Step name -> idempotency key of the step list.
            Completed steps are found by their key, so a step renamed in the
            step list still feeds its dependents.

        :raise UnresolvedDependency:
            Neither source has the dependency
        """
        inputs = {}
        outputs = {}
        idempotency_keys = idempotency_keys or {}
        for dep in step.dependencies:
            if dep in idempotency_keys:
                entry = manifest.get_by_idempotency_key(idempotency_keys[dep])
            else:
                entry = manifest.get(dep)
            if entry is not None:
                inputs[dep] = entry.address
                outputs[dep] = dict(entry.outputs)
            elif self.network.has_role(dep):
                inputs[dep] = self.network.get_role(dep)
            else:
                raise UnresolvedDependency(step.name, dep)
        return inputs, outputs

    def check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise DeploymentCancelled("Deployment cancelled between steps")

    def run(self, steps: list[DeploymentStep], manifest: DeploymentManifest) -> DeploymentManifest:
        """Run all incomplete steps in order.

        :param steps:
            Ordered step list

        :param manifest:
            Existing manifest to resume, or an empty one

        :return:
            The same manifest object with new entries

        :raise StepFailed:
            A step failed. The manifest on the disk has everything that completed before it.
        """
        steps = list(steps)
        self.validate(steps)
        idempotency_keys = {s.name: s.idempotency_key for s in steps}

        assert manifest.chain_id == self.network.chain_id, f"Manifest is for chain {manifest.chain_id}, network is {self.network.chain_id}"

        logger.info("Running %d deployment steps on %s, %d already complete", len(steps), self.network.name, len(manifest))

        for idx, step in enumerate(steps, start=1):
            self.check_cancelled()

            existing = manifest.get_by_idempotency_key(step.idempotency_key)
            if existing is not None:
                logger.info("Step %d/%d %s already complete at %s, skipping", idx, len(steps), step.name, existing.address)
                continue

            inputs, outputs = self.resolve_inputs(step, manifest, idempotency_keys)

            context = StepContext(
                step=step,
                inputs=inputs,
                outputs=outputs,
                network=self.network,
                environment=self.environment,
                deployer=self.deployer,
                predictor=self.predictor,
                salt_engine=self.salt_engine,
                bootstrapper=self.bootstrapper,
            )

            logger.info("Step %d/%d %s starting", idx, len(steps), step.name)
            started = time.time()

            try:
                result = step.deploy(context)
            except (ConfigurationError, UnresolvedDependency, DeploymentCancelled):
                raise
            except (BootstrapError, OSError, Web3Exception, ValueError) as e:
                # OSError covers dropped node connections, ValueError JSON-RPC error responses
                logger.error("Step %s failed: %s", step.name, e)
                raise StepFailed(step.name, e) from e

            entry = ManifestEntry(
                step=step.name,
                address=Web3.to_checksum_address(result.address),
                idempotency_key=step.idempotency_key,
                outputs=dict(result.outputs),
            )
            manifest.add(entry)
            manifest.save()

            logger.info("Step %d/%d %s complete at %s, took %.1f seconds", idx, len(steps), step.name, entry.address, time.time() - started)

        return manifest
