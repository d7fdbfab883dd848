"""Uniswap v4 hook permission flags.

A v4 hook does not register its permissions anywhere. Instead, the
PoolManager reads them from the 14 lowest bits of the hook contract address.
Thus the hook must be deployed with CREATE2 using a salt that makes the
address carry exactly the permissions the hook implements.

- `Hooks.sol <https://github.com/Uniswap/v4-core/blob/main/src/libraries/Hooks.sol>`__

- `HookMiner.sol <https://github.com/Uniswap/v4-periphery/blob/main/src/utils/HookMiner.sol>`__

Example:

.. code-block:: python

    flags = get_hook_flags(["beforeInitialize", "afterInitialize", "beforeSwap"])
    constraint = HookFlagConstraint(flags)
    assert constraint("0x...2080")
"""

import enum
from dataclasses import dataclass

from eth_typing import HexAddress


class HookFlags(enum.IntFlag):
    """Permission bits as laid out in ``Hooks.sol``."""

    BEFORE_INITIALIZE = 1 << 13
    AFTER_INITIALIZE = 1 << 12
    BEFORE_ADD_LIQUIDITY = 1 << 11
    AFTER_ADD_LIQUIDITY = 1 << 10
    BEFORE_REMOVE_LIQUIDITY = 1 << 9
    AFTER_REMOVE_LIQUIDITY = 1 << 8
    BEFORE_SWAP = 1 << 7
    AFTER_SWAP = 1 << 6
    BEFORE_DONATE = 1 << 5
    AFTER_DONATE = 1 << 4
    BEFORE_SWAP_RETURNS_DELTA = 1 << 3
    AFTER_SWAP_RETURNS_DELTA = 1 << 2
    AFTER_ADD_LIQUIDITY_RETURNS_DELTA = 1 << 1
    AFTER_REMOVE_LIQUIDITY_RETURNS_DELTA = 1 << 0


#: All permission bits, ``Hooks.ALL_HOOK_MASK``
ALL_HOOK_MASK = (1 << 14) - 1


def _normalise_flag_name(name: str) -> str:
    # beforeSwap -> BEFORE_SWAP
    if name.isupper() or "_" in name:
        return name.upper()
    out = []
    for c in name:
        if c.isupper():
            out.append("_")
        out.append(c.upper())
    return "".join(out)


def get_hook_flags(names: list[str]) -> int:
    """Turn permission names to the flag bits.

    Accepts both Solidity ``Hooks.Permissions`` field names (``beforeSwap``)
    and constant names (``BEFORE_SWAP``).

    :raise ValueError:
        Unknown permission name
    """
    flags = 0
    for name in names:
        key = _normalise_flag_name(name)
        try:
            flags |= HookFlags[key]
        except KeyError as e:
            raise ValueError(f"Unknown hook permission {name}") from e
    return flags


def get_address_hook_flags(address: HexAddress | str) -> HookFlags:
    """Which permissions an address grants to a hook deployed there."""
    return HookFlags(int(address, 16) & ALL_HOOK_MASK)


@dataclass(frozen=True)
class HookFlagConstraint:
    """Address predicate: the masked low bits must equal the wanted flags.

    Same rule as ``HookMiner.find()``: ``uint160(hook) & FLAG_MASK == flags``.
    All permission bits not asked for must be clear, otherwise the
    PoolManager would call hook functions the contract does not implement.

    Instances are picklable, so they can be shipped to salt search worker processes.
    """

    #: Wanted permission bits
    flags: int

    #: Which bits we care about
    mask: int = ALL_HOOK_MASK

    def __post_init__(self):
        assert self.flags & ~self.mask == 0, f"Flags {self.flags:#x} fall outside mask {self.mask:#x}"

    def __call__(self, address: HexAddress | str) -> bool:
        return int(address, 16) & self.mask == self.flags

    def __str__(self):
        return f"address & {self.mask:#06x} == {self.flags:#06x}"
