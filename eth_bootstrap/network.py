"""Per-network addresses of pre-existing infrastructure.

Each network we deploy on has a fixed set of externally supplied contracts
(PoolManager, Airlock, routers, ...) that go to constructors and initializers.
They are read from a JSON file once per run and never change during the run.

Example ``networks.json``:

.. code-block:: json

    {
        "networks": {
            "8453": {
                "name": "base",
                "roles": {
                    "poolManager": "0x498581ff718922c3f8e6a244956af099b2652b2b",
                    "airlock": "0x660eaaedebc968f8f3694354fa8ec0b4c5ba8d12",
                    "rewardRecipient": "0x...",
                    "proxyAdmin": "0x...",
                    "router": {"universal": "0x6ff5693b99212da76ad316178a184ab56d299b43"},
                    "implementation": {"token": "0x..."}
                }
            }
        }
    }

Nested role groups are flattened with a dot: ``router.universal``, ``implementation.token``.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from eth_typing import ChecksumAddress
from web3 import Web3

from eth_bootstrap.errors import ConfigurationError, IncompleteNetworkProfile, UnsupportedNetwork

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class NetworkProfile:
    """Role name -> address mapping for one network."""

    #: EVM chain id
    chain_id: int

    #: Human readable name, e.g. ``base``
    name: str

    #: Role -> checksummed address. Read-only.
    roles: Mapping[str, ChecksumAddress] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the mapping so nobody mutates the profile during the run
        object.__setattr__(self, "roles", MappingProxyType(dict(self.roles)))

    def __repr__(self):
        return f"<NetworkProfile {self.name} chain:{self.chain_id} roles:{len(self.roles)}>"

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def get_role(self, role: str) -> ChecksumAddress:
        """Get the address of a role.

        :raise IncompleteNetworkProfile:
            If the role is not configured for this network
        """
        try:
            return self.roles[role]
        except KeyError:
            raise IncompleteNetworkProfile(self.name, role) from None


def _flatten_roles(network: str, roles: dict, prefix: str = "") -> dict[str, ChecksumAddress]:
    if not isinstance(roles, dict):
        raise ConfigurationError(f"Network {network}: roles must be an object of role name -> address, got {type(roles).__name__}")

    flat = {}
    for key, value in roles.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten_roles(network, value, prefix=f"{name}."))
            continue

        if not isinstance(value, str) or not Web3.is_address(value):
            raise ConfigurationError(f"Network {network}: role {name} has invalid address {value!r}")
        flat[name] = Web3.to_checksum_address(value)
    return flat


class NetworkConfigResolver:
    """Look up network profiles by chain id or name.

    Pure lookup, no side effects.
    """

    def __init__(self, profiles: Iterable[NetworkProfile]):
        self.profiles: dict[int, NetworkProfile] = {}
        for p in profiles:
            if p.chain_id in self.profiles:
                raise ConfigurationError(f"Duplicate network profile for chain {p.chain_id}")
            self.profiles[p.chain_id] = p

    def __repr__(self):
        return f"<NetworkConfigResolver {', '.join(p.name for p in self.profiles.values())}>"

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkConfigResolver":
        """Build from a parsed ``networks.json`` payload.

        :raise ConfigurationError:
            Malformed file or bad addresses
        """
        networks = data.get("networks") if isinstance(data, dict) else None
        if not isinstance(networks, dict):
            raise ConfigurationError("Network configuration must have a top level 'networks' object")

        profiles = []
        for chain_id_str, network in networks.items():
            try:
                chain_id = int(chain_id_str)
            except ValueError as e:
                raise ConfigurationError(f"Network key must be a chain id, got {chain_id_str}") from e

            if not isinstance(network, dict):
                raise ConfigurationError(f"Network {chain_id} must be an object with name and roles, got {type(network).__name__}")

            name = network.get("name") or str(chain_id)
            roles = _flatten_roles(name, network.get("roles", {}))
            profiles.append(NetworkProfile(chain_id=chain_id, name=name, roles=roles))

        return cls(profiles)

    @classmethod
    def from_json_file(cls, path: Path) -> "NetworkConfigResolver":
        """Load ``networks.json``."""
        path = Path(path)
        logger.info("Loading network profiles from %s", path)
        try:
            with open(path, "rt", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read network configuration {path}: {e}") from e
        return cls.from_dict(data)

    def get_network_names(self) -> list[str]:
        return [f"{p.name} ({p.chain_id})" for p in self.profiles.values()]

    def resolve(self, network_id: int | str) -> NetworkProfile:
        """Get the profile for a network.

        :param network_id:
            Chain id as int or a numeric string, or the network name (case-insensitive)

        :raise UnsupportedNetwork:
            No such network configured
        """
        if isinstance(network_id, int) or (isinstance(network_id, str) and network_id.isdigit()):
            profile = self.profiles.get(int(network_id))
        else:
            profile = next((p for p in self.profiles.values() if p.name.lower() == str(network_id).lower()), None)

        if profile is None:
            raise UnsupportedNetwork(network_id, self.get_network_names())

        return profile

    @staticmethod
    def validate(profile: NetworkProfile, required_roles: Iterable[str]):
        """Check the profile supplies every role the step list needs.

        :raise IncompleteNetworkProfile:
            Naming the first missing role in alphabetical order
        """
        missing = sorted(set(required_roles) - set(profile.roles))
        if missing:
            raise IncompleteNetworkProfile(profile.name, missing[0])
