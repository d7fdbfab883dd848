"""Search CREATE2 salts for addresses satisfying a bit-pattern constraint.

- Candidates are enumerated as an increasing integer counter starting from
  a caller supplied salt, so any result can be re-verified independently
  with :py:meth:`SaltSearchEngine.verify`

- The first matching candidate in enumeration order wins, also when the
  search is spread over multiple worker processes

- The search is bounded. We give up with :py:class:`eth_bootstrap.errors.SaltSearchExhausted`
  instead of burning CPU forever

This is the Python counterpart of ``HookMiner.find()`` in Uniswap v4 periphery.

Example:

.. code-block:: python

    engine = SaltSearchEngine(max_workers=4)
    candidate = engine.find_salt(
        DETERMINISTIC_DEPLOYMENT_PROXY,
        hook_init_code,
        HookFlagConstraint(get_hook_flags(["beforeSwap", "afterSwap"])),
        max_attempts=200_000,
    )
    print(f"Hook will land at {candidate.address} with salt {candidate.salt}")
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeAlias

from eth_typing import ChecksumAddress, HexAddress
from hexbytes import HexBytes
from joblib import Parallel, delayed
from web3 import Web3

from eth_bootstrap.create2 import AddressDerivation, AddressPredictor, compute_init_code_hash, salt_to_bytes
from eth_bootstrap.errors import DeploymentCancelled, SaltSearchExhausted

logger = logging.getLogger(__name__)


#: How many candidates a worker scans before we check for cancellation
DEFAULT_BATCH_SIZE = 10_000

#: Same loop limit as HookMiner.sol
DEFAULT_MAX_ATTEMPTS = 160_444

#: Either a fixed creation payload or ``salt -> creation payload``
InitCodeSource: TypeAlias = bytes | Callable[[int], bytes]

#: Pure address predicate
AddressConstraint: TypeAlias = Callable[[ChecksumAddress], bool]


@dataclass(slots=True, frozen=True)
class SaltCandidate:
    """A salt and the address it produces."""

    #: The contract executing CREATE2
    deployer: ChecksumAddress

    #: Salt as uint256
    salt: int

    #: Position in the enumeration, ``salt - start_salt``
    index: int

    #: Predicted contract address
    address: ChecksumAddress

    #: Keccak of the init code used for the prediction
    init_code_hash: HexBytes

    @property
    def salt_bytes(self) -> bytes:
        return salt_to_bytes(self.salt)


def _resolve_init_code(init_code: InitCodeSource, salt: int) -> bytes:
    if callable(init_code):
        return init_code(salt)
    return init_code


def _scan_range(
    deployer: ChecksumAddress,
    init_code: InitCodeSource,
    constraint: AddressConstraint,
    derivation: AddressDerivation,
    start: int,
    stop: int,
) -> tuple[int, ChecksumAddress, bytes] | None:
    """Scan salts ``[start, stop)`` and return the first hit.

    Module level so that joblib can ship it to worker processes.
    """
    fixed_hash = None if callable(init_code) else compute_init_code_hash(init_code)
    for salt in range(start, stop):
        init_code_hash = fixed_hash or compute_init_code_hash(init_code(salt))
        address = derivation(deployer, salt, init_code_hash)
        if constraint(address):
            return salt, address, init_code_hash
    return None


def _split(start: int, stop: int, parts: int) -> list[tuple[int, int]]:
    """Split a range to contiguous ordered chunks."""
    size = -(-(stop - start) // parts)
    return [(s, min(s + size, stop)) for s in range(start, stop, size)]


class SaltSearchEngine:
    """Find the first salt whose CREATE2 address satisfies a constraint.

    - Pure local computation, no network calls

    - Deterministic: the same deployer, init code and starting salt always give the same result
    """

    def __init__(
        self,
        predictor: AddressPredictor | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int = 1,
        cancel_event: threading.Event | None = None,
    ):
        """
        :param predictor:
            Address derivation rule. Default to EVM CREATE2.

        :param batch_size:
            Candidates per worker between cancellation checks

        :param max_workers:
            Worker processes. Set 1 to search in the current process.

        :param cancel_event:
            Set this event from another thread to abort the search between batches
        """
        assert batch_size > 0
        assert max_workers >= 1
        self.predictor = predictor or AddressPredictor()
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.cancel_event = cancel_event

    def __repr__(self):
        return f"<SaltSearchEngine workers:{self.max_workers} batch:{self.batch_size}>"

    def find_salt(
        self,
        deployer: HexAddress | str,
        init_code: InitCodeSource,
        constraint: AddressConstraint,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        start_salt: int = 0,
    ) -> SaltCandidate:
        """Search salts ``start_salt, start_salt + 1, ...``.

        :param deployer:
            The CREATE2 deployer contract

        :param init_code:
            Creation payload, or a function building one for a salt

        :param constraint:
            Address predicate, e.g. :py:class:`eth_bootstrap.hook_flags.HookFlagConstraint`

        :param max_attempts:
            Search budget

        :param start_salt:
            Seed of the enumeration

        :raise SaltSearchExhausted:
            Nothing found within the budget

        :raise DeploymentCancelled:
            Cancel event was set
        """
        assert max_attempts > 0, f"Bad max_attempts {max_attempts}"
        assert start_salt >= 0 and start_salt + max_attempts <= 2**256, f"Salt range out of uint256: {start_salt} + {max_attempts}"

        deployer = Web3.to_checksum_address(deployer)
        derivation = self.predictor.derivation
        stop = start_salt + max_attempts
        started = time.time()

        logger.info(
            "Searching salt for deployer %s, constraint %s, %d attempts starting from %d, %d workers",
            deployer,
            constraint,
            max_attempts,
            start_salt,
            self.max_workers,
        )

        cursor = start_salt
        with Parallel(n_jobs=self.max_workers) as parallel:
            while cursor < stop:
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise DeploymentCancelled(f"Salt search cancelled at salt {cursor}")

                batch_stop = min(cursor + self.batch_size * self.max_workers, stop)

                if self.max_workers == 1:
                    hits = [_scan_range(deployer, init_code, constraint, derivation, cursor, batch_stop)]
                else:
                    chunks = _split(cursor, batch_stop, self.max_workers)
                    hits = parallel(delayed(_scan_range)(deployer, init_code, constraint, derivation, s, e) for s, e in chunks)

                # Chunks are ordered, so the first hit has the lowest salt
                hit = next((h for h in hits if h is not None), None)
                if hit is not None:
                    salt, address, init_code_hash = hit
                    logger.info("Found salt %d for address %s after %d attempts, took %f seconds", salt, address, salt - start_salt + 1, time.time() - started)
                    return SaltCandidate(
                        deployer=deployer,
                        salt=salt,
                        index=salt - start_salt,
                        address=address,
                        init_code_hash=HexBytes(init_code_hash),
                    )

                logger.debug("No hit in salts %d - %d", cursor, batch_stop)
                cursor = batch_stop

        raise SaltSearchExhausted(max_attempts, start_salt)

    def verify(self, candidate: SaltCandidate, init_code: InitCodeSource, constraint: AddressConstraint) -> bool:
        """Re-derive a prior search result.

        :return:
            True if the candidate address follows from its salt and still satisfies the constraint
        """
        init_code_hash = compute_init_code_hash(_resolve_init_code(init_code, candidate.salt))
        address = self.predictor.predict(candidate.deployer, candidate.salt, init_code_hash)
        return address == candidate.address and init_code_hash == candidate.init_code_hash and constraint(address)
