"""Full isolated system deployment on the simulated chain.

Network roles: airlock, poolManager, router. The deployment is

1. placeholder factory proxy
2. hook at a salt-mined address, with the proxy address in its constructor
3. token implementation
4. governance implementation
5. factory implementation wired to the hook and the implementations
6. finalisation of the proxy to the factory implementation
"""

import pytest
from eth_abi import encode
from eth_utils import keccak

from eth_bootstrap.abi import encode_with_signature
from eth_bootstrap.create2 import predict_create2_address
from eth_bootstrap.errors import ConfirmationTimedOut, IncompleteNetworkProfile, SaltSearchExhausted, StepFailed
from eth_bootstrap.hook_flags import HookFlagConstraint, get_hook_flags
from eth_bootstrap.manifest import DeploymentManifest
from eth_bootstrap.network import NetworkConfigResolver
from eth_bootstrap.profiles import (
    DEFAULT_HOOK_PERMISSIONS,
    ProfileSettings,
    build_deployment_profile,
    get_profile_required_roles,
    get_profile_steps,
)
from eth_bootstrap.proxy import ProxyBootstrapper, ProxyState
from eth_bootstrap.runner import DeploymentStepRunner
from eth_bootstrap.salt import SaltSearchEngine

ISOLATED_STEPS = [
    "factory_proxy",
    "hook",
    "token_implementation",
    "governance_implementation",
    "factory_implementation",
    "finalize_factory_proxy",
]


@pytest.fixture()
def runner(environment, network, deployer) -> DeploymentStepRunner:
    return DeploymentStepRunner(environment, network, deployer)


@pytest.fixture()
def manifest(tmp_path, network) -> DeploymentManifest:
    return DeploymentManifest.create_or_load(tmp_path / "base.json", chain_id=network.chain_id, network=network.name, profile="isolated")


def _init_code(load_artifact, name: str, types: list[str], args: list) -> bytes:
    return bytes(load_artifact(name).bytecode) + encode(types, args)


def test_isolated_deployment(runner, manifest, environment, network, deployer, load_artifact, settings):
    """All six steps complete and the contracts are wired together."""
    steps = build_deployment_profile("isolated", load_artifact, settings)
    assert [s.name for s in steps] == ISOLATED_STEPS

    runner.run(steps, manifest)
    assert [e.step for e in manifest] == ISOLATED_STEPS

    factory = environment.create2_factory
    proxy = manifest.get_address("factory_proxy")
    hook = manifest.get_address("hook")
    token = manifest.get_address("token_implementation")
    governance = manifest.get_address("governance_implementation")
    factory_implementation = manifest.get_address("factory_implementation")

    # Hook address carries exactly the wanted permissions
    constraint = HookFlagConstraint(get_hook_flags(["beforeSwap", "afterSwap"]))
    assert constraint(hook)
    assert manifest.get("hook").outputs["constraint"] == str(constraint)

    # Hook was built with the proxy address before the factory existed
    hook_init_code = _init_code(load_artifact, "DopplerHook", ["address", "address"], [network.get_role("poolManager"), proxy])
    salt = int(manifest.get("hook").outputs["salt"])
    assert hook == predict_create2_address(factory, salt, keccak(hook_init_code))

    # Factory implementation refers to the hook and the implementations
    factory_init_code = _init_code(
        load_artifact,
        "FactoryImplementation",
        ["address", "address", "address", "address"],
        [hook, token, governance, network.get_role("airlock")],
    )
    assert factory_implementation == predict_create2_address(factory, 0, keccak(factory_init_code))

    # Proxy finalised once, to the factory implementation, with the router in the initializer
    finalize_entry = manifest.get("finalize_factory_proxy")
    assert finalize_entry.address == proxy
    assert finalize_entry.outputs["implementation"] == factory_implementation
    assert environment.proxies[proxy].implementation == factory_implementation
    assert environment.proxies[proxy].initialized
    assert environment.proxies[proxy].initializer_payload == encode_with_signature("initialize(address,address)", [deployer, network.get_role("router")])
    assert ProxyBootstrapper(environment, deployer).get_state(proxy) == ProxyState.finalized

    # Everything is on the disk
    assert DeploymentManifest.load(manifest.path) == manifest


def test_hook_salt_verifies(runner, manifest, network, load_artifact, settings):
    """The recorded salt can be re-verified independently of the run."""
    runner.run(build_deployment_profile("isolated", load_artifact, settings), manifest)

    hook_entry = manifest.get("hook")
    proxy = manifest.get_address("factory_proxy")
    hook_init_code = _init_code(load_artifact, "DopplerHook", ["address", "address"], [network.get_role("poolManager"), proxy])

    engine = SaltSearchEngine()
    candidate = engine.find_salt(runner.environment.create2_factory, hook_init_code, settings.get_hook_constraint(), start_salt=int(hook_entry.outputs["salt"]), max_attempts=1)
    assert candidate.address == hook_entry.address
    assert engine.verify(candidate, hook_init_code, settings.get_hook_constraint())


def test_rerun_completed_deployment(runner, manifest, environment, load_artifact, settings):
    """Running the same deployment again sends nothing."""
    steps = build_deployment_profile("isolated", load_artifact, settings)
    runner.run(steps, manifest)
    submissions = len(environment.submissions)

    resumed = DeploymentManifest.create_or_load(manifest.path, chain_id=manifest.chain_id, network=manifest.network, profile="isolated")
    runner.run(steps, resumed)
    assert len(environment.submissions) == submissions
    assert resumed == manifest


def test_failure_halts_and_resumes(runner, manifest, environment, load_artifact, settings):
    """A failure in step 4 leaves exactly the first three steps recorded. The re-run completes the rest."""
    steps = build_deployment_profile("isolated", load_artifact, settings)
    runner.run(steps[:3], manifest)

    environment.fail_next_submission()
    with pytest.raises(StepFailed) as exc_info:
        runner.run(steps, manifest)

    assert exc_info.value.step == "governance_implementation"
    on_disk = DeploymentManifest.load(manifest.path)
    assert [e.step for e in on_disk] == ISOLATED_STEPS[:3]

    hook = manifest.get_address("hook")
    runner.run(steps, manifest)
    assert [e.step for e in manifest] == ISOLATED_STEPS
    assert manifest.get_address("hook") == hook


def test_finalize_recovers_after_timeout(runner, manifest, environment, load_artifact, settings):
    """Finalisation that landed despite a lost confirmation is adopted on the re-run."""
    steps = build_deployment_profile("isolated", load_artifact, settings)
    runner.run(steps[:5], manifest)

    environment.lose_next_confirmation()
    with pytest.raises(StepFailed) as exc_info:
        runner.run(steps, manifest)

    assert exc_info.value.step == "finalize_factory_proxy"
    assert isinstance(exc_info.value.cause, ConfirmationTimedOut)
    assert len(manifest) == 5

    submissions = len(environment.submissions)
    fresh_runner = DeploymentStepRunner(environment, runner.network, runner.deployer)
    fresh_runner.run(steps, manifest)
    assert len(manifest) == 6
    assert len(environment.submissions) == submissions


def test_salt_search_exhausted(runner, manifest, environment, load_artifact):
    """Exhausted hook search halts the run at the hook step."""
    settings = ProfileSettings(max_salt_attempts=1, start_salt=0)
    steps = build_deployment_profile("isolated", load_artifact, settings)

    with pytest.raises(StepFailed) as exc_info:
        runner.run(steps, manifest)

    assert exc_info.value.step == "hook"
    assert isinstance(exc_info.value.cause, SaltSearchExhausted)
    assert [e.step for e in manifest] == ["factory_proxy"]


def test_implementations_profile(runner, manifest, load_artifact):
    steps = build_deployment_profile("implementations", load_artifact)
    runner.run(steps, manifest)
    assert [e.step for e in manifest] == ["token_implementation", "governance_implementation"]


def test_custom_factory_needs_implementation_roles(environment, deployer, tmp_path, load_artifact):
    """Custom factory profile takes existing implementations from the network profile."""
    networks = NetworkConfigResolver.from_dict(
        {
            "networks": {
                str(environment.chain_id): {
                    "name": "base",
                    "roles": {
                        "airlock": "0x660eaaedebc968f8f3694354fa8ec0b4c5ba8d12",
                        "poolManager": "0x498581ff718922c3f8e6a244956af099b2652b2b",
                        "router": "0x6ff5693b99212da76ad316178a184ab56d299b43",
                        "implementation": {"token": "0x1111111111111111111111111111111111111111"},
                    },
                }
            }
        }
    )
    network = networks.resolve(environment.chain_id)
    manifest = DeploymentManifest(chain_id=network.chain_id, network=network.name, path=tmp_path / "custom.json")
    runner = DeploymentStepRunner(environment, network, deployer)

    with pytest.raises(IncompleteNetworkProfile) as exc_info:
        runner.run(build_deployment_profile("custom-factory", load_artifact), manifest)

    assert exc_info.value.role == "implementation.governance"
    assert len(environment.submissions) == 0


def test_profile_required_roles():
    assert get_profile_required_roles("isolated") == ["airlock", "poolManager", "router"]
    assert get_profile_required_roles("implementations") == ["airlock"]
    assert get_profile_required_roles("custom-factory") == ["airlock", "implementation.governance", "implementation.token", "poolManager", "router"]
    assert [s.name for s in get_profile_steps("isolated")] == ISOLATED_STEPS


def test_unknown_profile(load_artifact):
    with pytest.raises(KeyError):
        build_deployment_profile("everything", load_artifact)


def test_settings_from_dict():
    """Settings file overrides contracts and constructor arguments."""
    settings = ProfileSettings.from_dict(
        {
            "contracts": {
                "hook": {
                    "artifact": "MyHook",
                    "constructor_types": ["address", "address", "address"],
                    "constructor_args": ["@poolManager", "@factory_proxy", "@rewardRecipient"],
                }
            },
            "initializer": {"signature": "initialize(address)", "args": ["@deployer"]},
            "hook_permissions": ["beforeSwap"],
            "max_salt_attempts": 1000,
        }
    )
    assert settings.max_salt_attempts == 1000
    assert settings.get_contract("hook").artifact == "MyHook"
    assert settings.get_contract("hook").get_dependencies() == ["poolManager", "factory_proxy", "rewardRecipient"]
    assert settings.initializer.get_dependencies() == []
    assert get_profile_required_roles("isolated", settings) == ["airlock", "poolManager", "rewardRecipient"]
    assert DEFAULT_HOOK_PERMISSIONS != settings.hook_permissions
