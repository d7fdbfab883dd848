"""Shared fixtures.

Contracts are never executed by :py:class:`eth_bootstrap.testing.SimulatedEnvironment`,
so the artifacts here carry dummy bytecode. Each contract gets distinct bytecode
so that CREATE2 addresses differ.
"""

import functools
import json
from pathlib import Path

import pytest

from eth_bootstrap.abi import get_artifact
from eth_bootstrap.network import NetworkConfigResolver, NetworkProfile
from eth_bootstrap.profiles import ProfileSettings
from eth_bootstrap.testing import SimulatedEnvironment

#: Base
CHAIN_ID = 8453

#: Anvil account #0
DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

#: Minimal network profile the isolated deployment needs
NETWORKS = {
    "networks": {
        str(CHAIN_ID): {
            "name": "base",
            "roles": {
                "airlock": "0x660eaaedebc968f8f3694354fa8ec0b4c5ba8d12",
                "poolManager": "0x498581ff718922c3f8e6a244956af099b2652b2b",
                "router": "0x6ff5693b99212da76ad316178a184ab56d299b43",
            },
        },
        "1": {
            "name": "ethereum",
            "roles": {
                "poolManager": "0x000000000004444c5dc75cb358380d2e3de08a90",
                "implementation": {
                    "token": "0x1111111111111111111111111111111111111111",
                    "governance": "0x2222222222222222222222222222222222222222",
                },
            },
        },
    }
}

#: Contract name -> dummy creation bytecode
CONTRACTS = {
    "FactoryProxy": "0x6080604052348015600e575f80fd5b50601f",
    "DopplerHook": "0x6080604052348015600e575f80fd5b50602f",
    "TokenImplementation": "0x6080604052348015600e575f80fd5b50603f",
    "GovernanceImplementation": "0x6080604052348015600e575f80fd5b50604f",
    "FactoryImplementation": "0x6080604052348015600e575f80fd5b50605f",
}


def write_artifacts(out: Path) -> Path:
    """Write Forge style artifacts ``out/Name.sol/Name.json``."""
    for name, bytecode in CONTRACTS.items():
        folder = out / f"{name}.sol"
        folder.mkdir(parents=True, exist_ok=True)
        payload = {"abi": [], "bytecode": {"object": bytecode, "linkReferences": {}}}
        (folder / f"{name}.json").write_text(json.dumps(payload))
    return out


def write_networks(path: Path) -> Path:
    path.write_text(json.dumps(NETWORKS))
    return path


@pytest.fixture()
def artifacts_folder(tmp_path) -> Path:
    return write_artifacts(tmp_path / "out")


@pytest.fixture()
def load_artifact(artifacts_folder):
    return functools.partial(get_artifact, artifacts_folder)


@pytest.fixture()
def networks_file(tmp_path) -> Path:
    return write_networks(tmp_path / "networks.json")


@pytest.fixture()
def network() -> NetworkProfile:
    return NetworkConfigResolver.from_dict(NETWORKS).resolve(CHAIN_ID)


@pytest.fixture()
def environment() -> SimulatedEnvironment:
    return SimulatedEnvironment(chain_id=CHAIN_ID)


@pytest.fixture()
def deployer() -> str:
    return DEPLOYER


@pytest.fixture()
def settings() -> ProfileSettings:
    return ProfileSettings(hook_permissions=["beforeSwap", "afterSwap"])
