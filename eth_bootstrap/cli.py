"""eth-bootstrap command line.

Deploy a profile to a network:

.. code-block:: shell

    export JSON_RPC_URL=https://mainnet.base.org
    export PRIVATE_KEY=0x...
    eth-bootstrap deploy \\
        --network base \\
        --profile isolated \\
        --networks-file networks.json \\
        --artifacts out \\
        --manifest deployments/base.json

Dry run against the in-memory chain, no secrets needed. The manifest is marked
simulated and a live run refuses to resume it:

.. code-block:: shell

    eth-bootstrap deploy --simulate --network base --networks-file networks.json --artifacts out --manifest /tmp/base.json

Other commands

- ``show`` - print a manifest
- ``verify`` - check every manifest address has code on the chain
- ``predict`` - compute a CREATE or CREATE2 address
- ``profiles`` - list deployment profiles

Environment variables

- ``JSON_RPC_URL`` - node to deploy to, not needed with ``--simulate``
- ``PRIVATE_KEY`` - 0x prefixed deployer private key, not needed with ``--simulate``
- ``LOG_LEVEL`` - ``debug``, ``info`` (default) or ``warning``
"""

import argparse
import datetime
import functools
import json
import logging
import os
import sys
import time
from pathlib import Path

from tabulate import tabulate
from web3 import HTTPProvider, Web3

from eth_bootstrap.abi import get_artifact
from eth_bootstrap.create2 import DETERMINISTIC_DEPLOYMENT_PROXY, AddressPredictor
from eth_bootstrap.environment import ExecutionEnvironment
from eth_bootstrap.errors import BootstrapError, ConfigurationError, StepFailed
from eth_bootstrap.hotwallet import HotWallet
from eth_bootstrap.manifest import DeploymentManifest
from eth_bootstrap.network import NetworkConfigResolver
from eth_bootstrap.profiles import DEPLOYMENT_PROFILES, ProfileSettings, build_deployment_profile, get_profile_required_roles, get_profile_steps
from eth_bootstrap.runner import DeploymentStepRunner
from eth_bootstrap.salt import SaltSearchEngine
from eth_bootstrap.testing import SimulatedEnvironment
from eth_bootstrap.utils import format_duration, setup_console_logging
from eth_bootstrap.web3_environment import Web3ExecutionEnvironment

logger = logging.getLogger(__name__)


#: Deployer of simulated runs when no private key is given (Anvil account #0)
SIMULATED_DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def _read_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigurationError(f"{name} environment variable missing")
    return value


def _load_settings(args) -> ProfileSettings:
    if args.settings:
        try:
            with open(args.settings, "rt", encoding="utf-8") as f:
                settings = ProfileSettings.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError) as e:
            raise ConfigurationError(f"Cannot read profile settings {args.settings}: {e}") from e
    else:
        settings = ProfileSettings()

    if args.max_salt_attempts is not None:
        settings.max_salt_attempts = args.max_salt_attempts
    if args.start_salt is not None:
        settings.start_salt = args.start_salt
    return settings


def _create_environment(args, chain_id: int) -> tuple[ExecutionEnvironment, str]:
    """Set up where we deploy and who deploys."""
    if args.simulate:
        private_key = os.environ.get("PRIVATE_KEY")
        deployer = HotWallet.from_private_key(private_key).address if private_key else SIMULATED_DEPLOYER
        logger.info("Simulated deployment, nothing is broadcast")
        return SimulatedEnvironment(chain_id=chain_id), deployer

    web3 = Web3(HTTPProvider(_read_env("JSON_RPC_URL"), request_kwargs={"timeout": 60}))
    wallet = HotWallet.from_private_key(_read_env("PRIVATE_KEY"))
    wallet.sync_nonce(web3)

    environment = Web3ExecutionEnvironment(
        web3,
        wallet,
        confirmation_timeout=datetime.timedelta(seconds=args.confirmation_timeout),
    )

    if environment.chain_id != chain_id:
        raise ConfigurationError(f"JSON_RPC_URL points to chain {environment.chain_id}, network profile is for chain {chain_id}")

    balance = web3.eth.get_balance(wallet.address)
    logger.info("Deployer %s has %f ETH", wallet.address, balance / 10**18)
    return environment, wallet.address


def deploy(args) -> int:
    networks = NetworkConfigResolver.from_json_file(Path(args.networks_file))
    network = networks.resolve(args.network)
    settings = _load_settings(args)

    load_artifact = functools.partial(get_artifact, Path(args.artifacts))
    steps = build_deployment_profile(args.profile, load_artifact, settings)

    manifest = DeploymentManifest.create_or_load(
        Path(args.manifest),
        chain_id=network.chain_id,
        network=network.name,
        profile=args.profile,
        simulated=args.simulate,
    )

    environment, deployer = _create_environment(args, network.chain_id)

    runner = DeploymentStepRunner(
        environment,
        network,
        deployer,
        salt_engine=SaltSearchEngine(max_workers=args.salt_workers),
    )

    started = time.time()
    try:
        runner.run(steps, manifest)
    except StepFailed as e:
        print(f"Deployment halted at step {e.step}: {e.cause}")
        print(f"Completed steps are recorded in {args.manifest}, re-run to resume")
        return 1

    print(f"Deployment of {args.profile} on {network.name} complete in {format_duration(time.time() - started)}")
    print(_format_manifest(manifest))
    return 0


def _format_manifest(manifest: DeploymentManifest) -> str:
    rows = [[e.step, e.address, e.completed_at.strftime("%Y-%m-%d %H:%M:%S"), ", ".join(f"{k}={v}" for k, v in sorted(e.outputs.items()) if k != "tx_hash")] for e in manifest]
    return tabulate(rows, headers=["Step", "Address", "Completed (UTC)", "Outputs"], tablefmt="simple")


def show(args) -> int:
    manifest = DeploymentManifest.load(Path(args.manifest))
    print(f"Network {manifest.network}, chain {manifest.chain_id}, profile {manifest.profile or '-'}{', simulated' if manifest.simulated else ''}")
    print(_format_manifest(manifest))
    return 0


def verify(args) -> int:
    manifest = DeploymentManifest.load(Path(args.manifest))
    web3 = Web3(HTTPProvider(_read_env("JSON_RPC_URL"), request_kwargs={"timeout": 60}))
    if web3.eth.chain_id != manifest.chain_id:
        raise ConfigurationError(f"JSON_RPC_URL points to chain {web3.eth.chain_id}, manifest is for chain {manifest.chain_id}")

    missing = [e for e in manifest if not web3.eth.get_code(e.address)]
    for e in missing:
        print(f"Step {e.step}: no code at {e.address}")

    if missing:
        return 1

    print(f"All {len(manifest)} contracts found on chain {manifest.chain_id}")
    return 0


def predict(args) -> int:
    predictor = AddressPredictor()
    if args.nonce is not None:
        address = predictor.predict(args.deployer or SIMULATED_DEPLOYER, args.nonce)
    else:
        if args.salt is None or not (args.init_code_hash or args.init_code):
            raise ConfigurationError("CREATE2 prediction needs --salt and --init-code-hash or --init-code")
        init_code_hash = Web3.to_bytes(hexstr=args.init_code_hash) if args.init_code_hash else Web3.keccak(hexstr=args.init_code)
        address = predictor.predict(args.deployer or DETERMINISTIC_DEPLOYMENT_PROXY, args.salt, init_code_hash)
    print(address)
    return 0


def profiles(args) -> int:
    rows = []
    for name, (_, description) in DEPLOYMENT_PROFILES.items():
        steps = get_profile_steps(name)
        rows.append([name, description, "\n".join(s.name for s in steps), ", ".join(get_profile_required_roles(name))])
    print(tabulate(rows, headers=["Profile", "Description", "Steps", "Required roles"], tablefmt="grid"))
    return 0


def _int(value: str) -> int:
    # Decimal or 0x hex
    return int(value, 0)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="eth-bootstrap", description="Deterministic bootstrap deployments of proxies, implementations and hooks")
    parser.add_argument("--log-file", default=None, help="Write the log also to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Deploy or resume a deployment profile")
    deploy_parser.add_argument("--network", required=True, help="Chain id or network name in the networks file")
    deploy_parser.add_argument("--profile", default="isolated", choices=list(DEPLOYMENT_PROFILES), help="Deployment profile")
    deploy_parser.add_argument("--networks-file", required=True, help="Network profiles JSON")
    deploy_parser.add_argument("--artifacts", default="out", help="Compiler output folder, e.g. Forge out/")
    deploy_parser.add_argument("--manifest", required=True, help="Deployment manifest JSON, created or resumed")
    deploy_parser.add_argument("--settings", default=None, help="Profile settings JSON overriding contracts and constructor arguments")
    deploy_parser.add_argument("--simulate", action="store_true", help="Run against an in-memory chain")
    deploy_parser.add_argument("--max-salt-attempts", type=int, default=None, help="Hook salt search budget")
    deploy_parser.add_argument("--start-salt", type=_int, default=None, help="Where the hook salt search starts")
    deploy_parser.add_argument("--salt-workers", type=int, default=1, help="Worker processes for the hook salt search")
    deploy_parser.add_argument("--confirmation-timeout", type=int, default=300, help="Seconds to wait for each transaction")
    deploy_parser.set_defaults(func=deploy)

    show_parser = subparsers.add_parser("show", help="Print a deployment manifest")
    show_parser.add_argument("--manifest", required=True)
    show_parser.set_defaults(func=show)

    verify_parser = subparsers.add_parser("verify", help="Check manifest contracts exist on chain")
    verify_parser.add_argument("--manifest", required=True)
    verify_parser.set_defaults(func=verify)

    predict_parser = subparsers.add_parser("predict", help="Predict a contract address")
    predict_parser.add_argument("--deployer", default=None, help="Deployer account or CREATE2 factory")
    predict_parser.add_argument("--salt", type=_int, default=None)
    predict_parser.add_argument("--init-code-hash", default=None)
    predict_parser.add_argument("--init-code", default=None)
    predict_parser.add_argument("--nonce", type=int, default=None, help="Predict a CREATE address instead")
    predict_parser.set_defaults(func=predict)

    profiles_parser = subparsers.add_parser("profiles", help="List deployment profiles")
    profiles_parser.set_defaults(func=profiles)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = create_parser().parse_args(argv)
    setup_console_logging(log_file=Path(args.log_file) if args.log_file else None)

    try:
        return args.func(args)
    except BootstrapError as e:
        logger.exception("eth-bootstrap %s failed", args.command)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
