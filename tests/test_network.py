"""Network profiles."""

import json

import pytest
from web3 import Web3

from eth_bootstrap.errors import ConfigurationError, IncompleteNetworkProfile, UnsupportedNetwork
from eth_bootstrap.network import NetworkConfigResolver

NETWORKS = {
    "networks": {
        "8453": {
            "name": "base",
            "roles": {
                "airlock": "0x660eaaedebc968f8f3694354fa8ec0b4c5ba8d12",
                "poolManager": "0x498581ff718922c3f8e6a244956af099b2652b2b",
                "router": {"universal": "0x6ff5693b99212da76ad316178a184ab56d299b43"},
                "implementation": {"token": "0x1111111111111111111111111111111111111111"},
            },
        },
        "130": {
            "name": "Unichain",
            "roles": {"poolManager": "0x1f98400000000000000000000000000000000004"},
        },
    }
}


@pytest.fixture()
def resolver() -> NetworkConfigResolver:
    return NetworkConfigResolver.from_dict(NETWORKS)


def test_resolve_by_chain_id_and_name(resolver):
    assert resolver.resolve(8453).name == "base"
    assert resolver.resolve("8453").chain_id == 8453
    assert resolver.resolve("unichain").chain_id == 130
    assert resolver.resolve("BASE").chain_id == 8453


def test_unsupported_network(resolver):
    with pytest.raises(UnsupportedNetwork) as exc_info:
        resolver.resolve(1)
    assert exc_info.value.network_id == 1
    assert "base (8453)" in str(exc_info.value)

    with pytest.raises(UnsupportedNetwork):
        resolver.resolve("ethereum")


def test_roles_are_checksummed_and_flattened(resolver):
    base = resolver.resolve(8453)
    assert base.get_role("airlock") == Web3.to_checksum_address("0x660eaaedebc968f8f3694354fa8ec0b4c5ba8d12")
    assert base.get_role("router.universal") == Web3.to_checksum_address("0x6ff5693b99212da76ad316178a184ab56d299b43")
    assert base.has_role("implementation.token")
    assert not base.has_role("router")


def test_missing_role(resolver):
    unichain = resolver.resolve(130)
    with pytest.raises(IncompleteNetworkProfile) as exc_info:
        unichain.get_role("airlock")
    assert exc_info.value.role == "airlock"
    assert exc_info.value.network == "Unichain"


def test_validate_required_roles(resolver):
    """The first missing role in alphabetical order is reported."""
    base = resolver.resolve(8453)
    NetworkConfigResolver.validate(base, ["airlock", "poolManager", "router.universal"])

    with pytest.raises(IncompleteNetworkProfile) as exc_info:
        NetworkConfigResolver.validate(base, ["rewardRecipient", "airlock", "proxyAdmin"])
    assert exc_info.value.role == "proxyAdmin"


def test_profile_is_immutable(resolver):
    base = resolver.resolve(8453)
    with pytest.raises(TypeError):
        base.roles["airlock"] = "0x0000000000000000000000000000000000000000"


def test_invalid_address():
    with pytest.raises(ConfigurationError):
        NetworkConfigResolver.from_dict({"networks": {"1": {"name": "ethereum", "roles": {"airlock": "0x1234"}}}})


def test_invalid_chain_id():
    with pytest.raises(ConfigurationError):
        NetworkConfigResolver.from_dict({"networks": {"mainnet": {"roles": {}}}})


def test_malformed_network_entries():
    """Wrong JSON shapes are configuration errors."""
    with pytest.raises(ConfigurationError):
        NetworkConfigResolver.from_dict({"networks": {"1": {"name": "ethereum", "roles": ["0x660eaaedebc968f8f3694354fa8ec0b4c5ba8d12"]}}})

    with pytest.raises(ConfigurationError):
        NetworkConfigResolver.from_dict({"networks": {"1": "ethereum"}})


def test_missing_networks_key():
    with pytest.raises(ConfigurationError):
        NetworkConfigResolver.from_dict({"chains": {}})


def test_from_json_file(tmp_path):
    path = tmp_path / "networks.json"
    path.write_text(json.dumps(NETWORKS))
    resolver = NetworkConfigResolver.from_json_file(path)
    assert resolver.resolve("base").chain_id == 8453


def test_unreadable_json_file(tmp_path):
    path = tmp_path / "networks.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError):
        NetworkConfigResolver.from_json_file(path)

    with pytest.raises(ConfigurationError):
        NetworkConfigResolver.from_json_file(tmp_path / "missing.json")
