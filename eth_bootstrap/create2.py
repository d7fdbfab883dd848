"""Deterministic contract address prediction.

- ``CREATE``: the address is derived from the deployer and its nonce

- ``CREATE2`` (`EIP-1014 <https://eips.ethereum.org/EIPS/eip-1014>`__):
  the address is derived from the deployer, a 32 byte salt and the keccak
  of the creation payload (init code)

.. code-block:: text

    CREATE  = keccak256(rlp([deployer, nonce]))[12:]
    CREATE2 = keccak256(0xff ++ deployer ++ salt ++ keccak256(init_code))[12:]

Predictions must match the EVM bit-for-bit. A wrong prediction means
a contract lands at a different address than the one we already handed
to its dependents.

Example:

.. code-block:: python

    predictor = AddressPredictor()
    init_code_hash = compute_init_code_hash(init_code)
    hook_address = predictor.predict(DETERMINISTIC_DEPLOYMENT_PROXY, 7, init_code_hash)
"""

from typing import Callable, TypeAlias

import rlp
from eth_typing import ChecksumAddress, HexAddress
from eth_utils import keccak, to_canonical_address, to_checksum_address
from hexbytes import HexBytes

#: Salt as an integer, 32 bytes or a 0x-prefixed hex string
Salt: TypeAlias = int | bytes | str

#: Signature of a pluggable address derivation rule
#:
#: ``(deployer, nonce_or_salt, init_code_hash or None) -> address``
AddressDerivation: TypeAlias = Callable[[HexAddress | str, Salt, bytes | None], ChecksumAddress]

#: The deterministic deployment proxy by Arachnid.
#:
#: Present on most EVM chains and used by Forge scripts as the default CREATE2 deployer.
#: Call data is ``salt ++ init_code``, returns the 20 byte created address.
#:
#: https://github.com/Arachnid/deterministic-deployment-proxy
DETERMINISTIC_DEPLOYMENT_PROXY = "0x4e59b44847b379578588920cA78FbF26c0B4956C"


def salt_to_bytes(salt: Salt) -> bytes:
    """Normalise a salt to 32 bytes.

    Integers are encoded big-endian, like ``bytes32(uint256(salt))`` in Solidity.
    """
    if isinstance(salt, int):
        assert 0 <= salt < 2**256, f"Salt out of uint256 range: {salt}"
        return salt.to_bytes(32, "big")

    if isinstance(salt, str):
        salt = HexBytes(salt)

    salt = bytes(salt)
    assert len(salt) == 32, f"Salt must be 32 bytes, got {len(salt)}"
    return salt


def compute_init_code_hash(init_code: bytes | str) -> bytes:
    """Keccak of the creation payload, as used in CREATE2."""
    return keccak(HexBytes(init_code))


def predict_create2_address(deployer: HexAddress | str, salt: Salt, init_code_hash: bytes) -> ChecksumAddress:
    """Predict a CREATE2 address.

    :param deployer:
        The contract executing ``CREATE2`` opcode, e.g. a factory or the deterministic deployment proxy.

    :param salt:
        Salt as int or 32 bytes

    :param init_code_hash:
        See :py:func:`compute_init_code_hash`

    :return:
        Checksummed address
    """
    assert len(init_code_hash) == 32, f"Bad init code hash length: {len(init_code_hash)}"
    payload = b"\xff" + to_canonical_address(deployer) + salt_to_bytes(salt) + bytes(init_code_hash)
    return to_checksum_address(keccak(payload)[12:])


def predict_create_address(deployer: HexAddress | str, nonce: int) -> ChecksumAddress:
    """Predict a CREATE address from deployer nonce.

    :param deployer:
        Externally owned account or contract doing the deployment

    :param nonce:
        Transaction count of an EOA, or contract nonce (starts at 1) for a factory contract
    """
    assert type(nonce) == int and nonce >= 0, f"Bad nonce: {nonce}"
    payload = rlp.encode([to_canonical_address(deployer), nonce])
    return to_checksum_address(keccak(payload)[12:])


def evm_address_derivation(deployer: HexAddress | str, nonce_or_salt: Salt, init_code_hash: bytes | None) -> ChecksumAddress:
    """The default EVM rule: CREATE2 if we know the init code hash, CREATE otherwise."""
    if init_code_hash is None:
        assert isinstance(nonce_or_salt, int), f"CREATE needs an integer nonce, got {nonce_or_salt}"
        return predict_create_address(deployer, nonce_or_salt)
    return predict_create2_address(deployer, nonce_or_salt, init_code_hash)


class AddressPredictor:
    """Compute where a contract would land without deploying it.

    Used to hand out forward references: an earlier contract gets
    the address of a later one in its constructor.

    The derivation rule is pluggable for chains that do not follow
    the EVM rules (e.g. zkSync has its own CREATE2 formula).
    """

    def __init__(self, derivation: AddressDerivation = evm_address_derivation):
        self.derivation = derivation

    def __repr__(self):
        return f"<AddressPredictor {getattr(self.derivation, '__name__', self.derivation)}>"

    def predict(self, deployer: HexAddress | str, nonce_or_salt: Salt, init_code_hash: bytes | None = None) -> ChecksumAddress:
        """Predict an address.

        Pure function of the inputs.

        :param deployer:
            Deployer identity

        :param nonce_or_salt:
            Nonce for CREATE, salt for CREATE2

        :param init_code_hash:
            Keccak of the creation payload. If given, use CREATE2.
        """
        return self.derivation(deployer, nonce_or_salt, init_code_hash)
