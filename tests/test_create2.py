"""Address prediction."""

import pytest
from eth_utils import keccak

from eth_bootstrap.create2 import (
    DETERMINISTIC_DEPLOYMENT_PROXY,
    AddressPredictor,
    compute_init_code_hash,
    predict_create2_address,
    predict_create_address,
    salt_to_bytes,
)


#: https://eips.ethereum.org/EIPS/eip-1014#examples
EIP_1014_EXAMPLES = [
    ("0x0000000000000000000000000000000000000000", "0x0000000000000000000000000000000000000000000000000000000000000000", "0x00", "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"),
    ("0xdeadbeef00000000000000000000000000000000", "0x0000000000000000000000000000000000000000000000000000000000000000", "0x00", "0xB928f69Bb1D91Cd65274e3c79d8986362984fDA3"),
    ("0xdeadbeef00000000000000000000000000000000", "0x000000000000000000000000feed000000000000000000000000000000000000", "0x00", "0xD04116cDd17beBE565EB2422F2497E06cC1C9833"),
    ("0x0000000000000000000000000000000000000000", "0x0000000000000000000000000000000000000000000000000000000000000000", "0xdeadbeef", "0x70f2b2914A2a4b783FaEFb75f459A580616Fcb5e"),
    ("0x00000000000000000000000000000000deadbeef", "0x00000000000000000000000000000000000000000000000000000000cafebabe", "0xdeadbeef", "0x60f3f640a8508fC6a86d45DF051962668E1e8AC7"),
    ("0x0000000000000000000000000000000000000000", "0x0000000000000000000000000000000000000000000000000000000000000000", "0x", "0xE33C0C7F7df4809055C3ebA6c09CFe4BaF1BD9e0"),
]


@pytest.mark.parametrize("deployer,salt,init_code,expected", EIP_1014_EXAMPLES)
def test_create2_eip_1014_examples(deployer, salt, init_code, expected):
    """CREATE2 matches the EIP-1014 test vectors."""
    address = predict_create2_address(deployer, salt, compute_init_code_hash(init_code))
    assert address == expected


def test_create_known_addresses():
    """CREATE addresses for nonces 0, 1, 2 of a well-known sender."""
    sender = "0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0"
    assert predict_create_address(sender, 0).lower() == "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"
    assert predict_create_address(sender, 1).lower() == "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"
    assert predict_create_address(sender, 2).lower() == "0xf778b86fa74e846c4f0a1fbd1335fe81c00a0c91"


def test_salt_int_and_bytes_agree():
    """Integer salts are big-endian bytes32."""
    assert salt_to_bytes(0xCAFEBABE) == bytes.fromhex("00" * 28 + "cafebabe")

    init_code_hash = keccak(b"\x00")
    assert predict_create2_address(DETERMINISTIC_DEPLOYMENT_PROXY, 0xCAFEBABE, init_code_hash) == predict_create2_address(DETERMINISTIC_DEPLOYMENT_PROXY, salt_to_bytes(0xCAFEBABE), init_code_hash)


def test_salt_out_of_range():
    with pytest.raises(AssertionError):
        salt_to_bytes(2**256)


def test_predictor_is_deterministic():
    """Same inputs always give the same address, different salts give different ones."""
    predictor = AddressPredictor()
    init_code_hash = compute_init_code_hash("0x6080604052")
    a = predictor.predict(DETERMINISTIC_DEPLOYMENT_PROXY, 1, init_code_hash)
    b = predictor.predict(DETERMINISTIC_DEPLOYMENT_PROXY, 1, init_code_hash)
    c = predictor.predict(DETERMINISTIC_DEPLOYMENT_PROXY, 2, init_code_hash)
    assert a == b
    assert a != c


def test_predictor_create_without_init_code_hash():
    """Nonce based prediction when there is no init code hash."""
    predictor = AddressPredictor()
    sender = "0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0"
    assert predictor.predict(sender, 0) == predict_create_address(sender, 0)


def test_predictor_custom_derivation():
    """Derivation rule can be swapped for chains with their own formula."""

    def fixed_derivation(deployer, nonce_or_salt, init_code_hash):
        return "0x000000000000000000000000000000000000dEaD"

    predictor = AddressPredictor(derivation=fixed_derivation)
    assert predictor.predict(DETERMINISTIC_DEPLOYMENT_PROXY, 1, keccak(b"")) == "0x000000000000000000000000000000000000dEaD"
