"""Contract artifact loading and ABI encoding helpers.

Reads compiler output produced by Forge (``out/Foo.sol/Foo.json``),
Hardhat (``artifacts/contracts/Foo.sol/Foo.json``) or a plain ``Foo.json``
file, and assembles creation payloads (init code) from the bytecode and
ABI-encoded constructor arguments.

We never compile anything ourselves. Run ``forge build`` first.
"""

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

import eth_abi
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_bootstrap.errors import ConfigurationError

logger = logging.getLogger(__name__)

# How many parsed artifacts we keep around
_CACHE_SIZE = 512


#: Ethereum 0x0000000000000000000000000000000000000000 address
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ArtifactNotFound(ConfigurationError):
    """Could not locate a compiler artifact for a contract name."""


@dataclass(slots=True, frozen=True)
class ContractArtifact:
    """Compiled contract as read from a compiler artifact file."""

    #: Contract name, e.g. ``ERC1967Proxy``
    name: str

    #: Creation bytecode without constructor arguments
    bytecode: HexBytes

    #: Contract ABI
    abi: list = field(default_factory=list, compare=False)

    #: Where we read this from
    path: Path | None = field(default=None, compare=False)

    def get_constructor_types(self) -> list[str]:
        """Read the constructor argument types from the ABI.

        :return:
            List of Solidity types, empty if there is no constructor.
        """
        for item in self.abi:
            if item.get("type") == "constructor":
                return [_abi_input_type(i) for i in item.get("inputs", [])]
        return []

    def build_init_code(self, constructor_args: Sequence[Any] = (), constructor_types: Sequence[str] | None = None) -> HexBytes:
        """Assemble the creation payload.

        :param constructor_args:
            Argument values

        :param constructor_types:
            Solidity types. If not given, read from the artifact ABI.

        :return:
            Bytecode followed by ABI-encoded constructor arguments
        """
        if constructor_types is None:
            constructor_types = self.get_constructor_types()
        return HexBytes(self.bytecode + encode_constructor_args(constructor_types, constructor_args))


def _abi_input_type(abi_input: dict) -> str:
    """Turn an ABI input description to a type string eth_abi understands.

    Tuples need their components spelled out.
    """
    abi_type = abi_input["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_abi_input_type(c) for c in abi_input["components"])
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def parse_artifact(name: str, data: dict | list, path: Path | None = None) -> ContractArtifact:
    """Parse a compiler artifact JSON payload.

    Supports solc/Forge/Hardhat output. Etherscan copy-pasted ABI (a plain list)
    carries no bytecode and cannot be deployed.
    """

    if type(data) == list:
        raise ArtifactNotFound(f"Artifact {name} at {path} is ABI only and has no bytecode")

    abi = data.get("abi", [])
    bytecode = data.get("bytecode")

    if type(bytecode) == dict:
        # Sol 0.8 / Forge
        # Contains keys object, sourceMap, linkReferences
        bytecode = bytecode["object"]

    if not bytecode or bytecode in ("0x", ""):
        raise ArtifactNotFound(f"Artifact {name} at {path} has empty bytecode. Is it an interface or abstract contract?")

    if "__$" in bytecode:
        raise ArtifactNotFound(f"Artifact {name} at {path} has unlinked library references")

    return ContractArtifact(
        name=name,
        bytecode=HexBytes(bytecode),
        abi=abi,
        path=path,
    )


@lru_cache(maxsize=_CACHE_SIZE)
def get_artifact(search_root: Path, name: str) -> ContractArtifact:
    """Find and load a compiled contract by its name.

    Lookup order

    - ``<root>/<name>.json``
    - ``<root>/<name>.sol/<name>.json`` (Forge ``out/``)
    - recursive search for ``<name>.json`` (Hardhat ``artifacts/``)

    Any results are cached.

    :param search_root:
        Forge ``out`` folder or similar

    :param name:
        Contract name

    :raise ArtifactNotFound:
        If the artifact does not exist or cannot be deployed
    """

    search_root = Path(search_root)

    candidates = [
        search_root / f"{name}.json",
        search_root / f"{name}.sol" / f"{name}.json",
    ]

    path = next((c for c in candidates if c.exists()), None)
    if path is None:
        matches = sorted(p for p in search_root.rglob(f"{name}.json") if "build-info" not in p.parts)
        if not matches:
            raise ArtifactNotFound(f"No artifact for contract {name} under {search_root}")
        path = matches[0]

    logger.debug("Loading artifact %s from %s", name, path)

    with open(path, "rt", encoding="utf-8") as f:
        data = json.load(f)

    return parse_artifact(name, data, path)


def encode_constructor_args(arg_types: Sequence[str], args: Sequence[Any]) -> bytes:
    """ABI encode constructor arguments.

    Addresses given as hex strings are checksummed first, as eth_abi
    refuses lowercased non-checksum input in strict mode.
    """
    assert len(arg_types) == len(args), f"Got {len(args)} arguments for types {arg_types}"
    if not arg_types:
        return b""

    values = [Web3.to_checksum_address(a) if t == "address" and isinstance(a, str) else a for t, a in zip(arg_types, args)]
    return eth_abi.encode(list(arg_types), values)


def encode_with_signature(function_signature: str, args: Sequence) -> bytes:
    """Mimic Solidity's abi.encodeWithSignature() in Python.

    Example:

    .. code-block:: python

            payload = encode_with_signature("initialize(address,address)", [owner, hook])
            assert type(payload) == bytes

    :param function_signature:
        Solidity function signature that can be hashed to a selector.

        ABI will be extracted from this signature.

    :param args:
        Argument values to be encoded.
    """

    assert type(args) in (tuple, list)

    function_selector = Web3.keccak(text=function_signature)[0:4]
    selector_text = function_signature[function_signature.find("(") + 1 : function_signature.rfind(")")]
    arg_types = [t for t in selector_text.split(",") if t]
    encoded_args = encode_constructor_args(arg_types, args)
    return function_selector + encoded_args


def is_zero_address(address: HexAddress | str | None) -> bool:
    """Is this address unset."""
    return address is None or int(address, 16) == 0
