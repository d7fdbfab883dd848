"""Durable record of completed deployment steps.

- Step name -> deployed address, auxiliary outputs and completion timestamp

- Written to the disk after every completed step. The write goes to a
  temporary file which is fsync'ed and atomically renamed over the old one,
  so a crash never leaves a half written manifest behind

- Completed entries are never overwritten

- Human readable JSON, so operators can verify deployed addresses
  on a blockchain explorer

Only :py:class:`eth_bootstrap.runner.DeploymentStepRunner` adds entries.
"""

import datetime
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from eth_typing import ChecksumAddress
from filelock import FileLock

from eth_bootstrap.errors import ConfigurationError, ManifestConflict, ManifestCorrupted

logger = logging.getLogger(__name__)


#: Bump if the file layout changes
MANIFEST_VERSION = 1


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None, microsecond=0)


@dataclass(slots=True)
class ManifestEntry:
    """One completed step."""

    #: Step name
    step: str

    #: The main address produced by the step
    address: ChecksumAddress

    #: Skip key. Usually the step name.
    idempotency_key: str

    #: Auxiliary outputs, e.g. the mined salt or a transaction hash.
    #:
    #: Strings only, so the file stays diffable.
    outputs: dict[str, str] = field(default_factory=dict)

    #: When the step finished, naive UTC
    completed_at: datetime.datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "idempotency_key": self.idempotency_key,
            "outputs": dict(self.outputs),
            "completed_at": self.completed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, step: str, data: dict) -> "ManifestEntry":
        return cls(
            step=step,
            address=data["address"],
            idempotency_key=data.get("idempotency_key", step),
            outputs=dict(data.get("outputs", {})),
            completed_at=datetime.datetime.fromisoformat(data["completed_at"]),
        )


class DeploymentManifest:
    """Ordered collection of completed steps for one network.

    Example:

    .. code-block:: python

        manifest = DeploymentManifest.create_or_load(Path("deployments/base.json"), chain_id=8453, network="base", profile="isolated")
        manifest = runner.run(steps, manifest)
        print(manifest.get_address("hook"))
    """

    def __init__(
        self,
        chain_id: int,
        network: str,
        profile: str | None = None,
        path: Path | None = None,
        entries: list[ManifestEntry] | None = None,
        simulated: bool = False,
    ):
        """
        :param path:
            Where to persist. If ``None`` the manifest lives in memory only.

        :param simulated:
            Entries come from a dry run against the in-memory chain and
            must never be resumed by a live deployment
        """
        self.chain_id = chain_id
        self.network = network
        self.profile = profile
        self.simulated = simulated
        self.path = Path(path) if path else None
        self.entries: dict[str, ManifestEntry] = {}
        for e in entries or []:
            self.entries[e.step] = e

    def __repr__(self):
        return f"<DeploymentManifest {self.network} chain:{self.chain_id} profile:{self.profile} simulated:{self.simulated} entries:{len(self.entries)}>"

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self.entries.values())

    def __contains__(self, step: str) -> bool:
        return step in self.entries

    def __eq__(self, other) -> bool:
        if not isinstance(other, DeploymentManifest):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def get(self, step: str) -> ManifestEntry | None:
        return self.entries.get(step)

    def get_by_idempotency_key(self, key: str) -> ManifestEntry | None:
        """Find a completed entry by its skip key."""
        return next((e for e in self.entries.values() if e.idempotency_key == key), None)

    def is_complete(self, key: str) -> bool:
        return self.get_by_idempotency_key(key) is not None

    def get_address(self, step: str) -> ChecksumAddress:
        """Address produced by a completed step.

        :raise KeyError:
            Step has not completed
        """
        return self.entries[step].address

    def add(self, entry: ManifestEntry):
        """Record a completed step in memory.

        :raise ManifestConflict:
            The step or its idempotency key is already recorded
        """
        if entry.step in self.entries or self.is_complete(entry.idempotency_key):
            raise ManifestConflict(f"Manifest already has a completed entry for step {entry.step} / key {entry.idempotency_key}")
        self.entries[entry.step] = entry

    def to_dict(self) -> dict:
        return {
            "version": MANIFEST_VERSION,
            "chain_id": self.chain_id,
            "network": self.network,
            "profile": self.profile,
            "simulated": self.simulated,
            "entries": {name: e.to_dict() for name, e in self.entries.items()},
        }

    @classmethod
    def from_dict(cls, data: dict, path: Path | None = None) -> "DeploymentManifest":
        try:
            version = data["version"]
            if version != MANIFEST_VERSION:
                raise ManifestCorrupted(f"Manifest {path} has version {version}, we support {MANIFEST_VERSION}")

            entries = [ManifestEntry.from_dict(step, e) for step, e in data["entries"].items()]
            return cls(
                chain_id=data["chain_id"],
                network=data["network"],
                profile=data.get("profile"),
                path=path,
                entries=entries,
                simulated=bool(data.get("simulated", False)),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ManifestCorrupted(f"Cannot parse manifest {path}: {e}") from e

    def get_lock(self) -> FileLock:
        assert self.path, "Manifest has no file path"
        return FileLock(str(self.path) + ".lock")

    def save(self):
        """Persist to the disk.

        Flushes and fsyncs before returning. No-op for in-memory manifests.
        """
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.to_dict(), indent=2)

        with self.get_lock():
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wt", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

        logger.debug("Saved manifest %s with %d entries", self.path, len(self.entries))

    @classmethod
    def load(cls, path: Path) -> "DeploymentManifest":
        """Read a manifest from the disk.

        :raise ManifestCorrupted:
            File is not a valid manifest

        :raise ConfigurationError:
            File is missing or cannot be read
        """
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"No manifest file at {path}")

        with FileLock(str(path) + ".lock"):
            try:
                with open(path, "rt", encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ManifestCorrupted(f"Manifest {path} is not valid JSON: {e}") from e
            except OSError as e:
                raise ConfigurationError(f"Cannot read manifest {path}: {e}") from e
        return cls.from_dict(data, path=path)

    @classmethod
    def create_or_load(
        cls,
        path: Path,
        chain_id: int,
        network: str,
        profile: str | None = None,
        simulated: bool = False,
    ) -> "DeploymentManifest":
        """Resume from an existing manifest file or start a fresh one.

        :param simulated:
            We are doing a dry run

        :raise ConfigurationError:
            The existing manifest belongs to another chain or deployment profile,
            or a live run would resume a dry run manifest and the other way around
        """
        path = Path(path)
        if not path.exists():
            logger.info("Starting a new manifest at %s", path)
            return cls(chain_id=chain_id, network=network, profile=profile, path=path, simulated=simulated)

        manifest = cls.load(path)
        if manifest.chain_id != chain_id:
            raise ConfigurationError(f"Manifest {path} is for chain {manifest.chain_id}, we are deploying on {chain_id}")

        if profile and manifest.profile and manifest.profile != profile:
            raise ConfigurationError(f"Manifest {path} was created with deployment profile {manifest.profile}, got {profile}")

        if manifest.simulated and not simulated:
            raise ConfigurationError(f"Manifest {path} was written by a simulated run, its contracts do not exist on chain {chain_id}. Use another manifest path.")

        if simulated and not manifest.simulated:
            raise ConfigurationError(f"Manifest {path} records a live deployment, a simulated run must not write to it")

        logger.info("Resuming manifest %s with %d completed steps", path, len(manifest))
        return manifest
