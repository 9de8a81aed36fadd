"""
The deletion ledger lists resources that should be removed from the cluster even though they are not part of any
manifest, e.g. leftovers of a renamed resource. Entries are grouped by the phase of a run they are deleted in:

```yaml
preApply:
- kind: Pod
  name: foo
  namespace: kube-system
postApply:
- kind: ConfigMap
  labels:
    app: legacy
preDestroy: []
```

Entries that were deleted successfully are dropped from the file at the end of a run, entries that failed stay and
are retried next time.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Iterator

from databind.core import Alias, SerializeDefaults
from databind.json import dump as ser, load as deser
from loguru import logger
import yaml

from kcm.kubectl import Kubectl
from kcm.resource.selector import ResourceSelector
from kcm.tools.executor import CancelToken
from kcm.tools.filechanges import write_file


class DeletionPhase(str, Enum):
    PRE_APPLY = "preApply"
    POST_APPLY = "postApply"
    PRE_DESTROY = "preDestroy"


class DeletionStatus(str, Enum):
    PENDING = "pending"
    DELETED = "deleted"


@dataclass(frozen=True)
class Deletion:
    selector: ResourceSelector
    status: DeletionStatus = DeletionStatus.PENDING


@dataclass
class DeletionsFile:
    """
    The on-disk representation of the ledger.
    """

    pre_apply: Annotated[list[ResourceSelector], Alias("preApply")] = field(default_factory=list)
    post_apply: Annotated[list[ResourceSelector], Alias("postApply")] = field(default_factory=list)
    pre_destroy: Annotated[list[ResourceSelector], Alias("preDestroy")] = field(default_factory=list)


@dataclass(frozen=True)
class Deletions:
    """
    An immutable deletion ledger. Every entry is paired with its status, changing a status yields a new ledger.
    """

    pre_apply: tuple[Deletion, ...] = ()
    post_apply: tuple[Deletion, ...] = ()
    pre_destroy: tuple[Deletion, ...] = ()

    def __getitem__(self, phase: DeletionPhase) -> tuple[Deletion, ...]:
        match phase:
            case DeletionPhase.PRE_APPLY:
                return self.pre_apply
            case DeletionPhase.POST_APPLY:
                return self.post_apply
            case DeletionPhase.PRE_DESTROY:
                return self.pre_destroy
        raise KeyError(phase)

    def with_phase(self, phase: DeletionPhase, entries: tuple[Deletion, ...]) -> "Deletions":
        match phase:
            case DeletionPhase.PRE_APPLY:
                return replace(self, pre_apply=entries)
            case DeletionPhase.POST_APPLY:
                return replace(self, post_apply=entries)
            case DeletionPhase.PRE_DESTROY:
                return replace(self, pre_destroy=entries)
        raise KeyError(phase)

    def is_empty(self) -> bool:
        return not (self.pre_apply or self.post_apply or self.pre_destroy)

    def pending(self, phase: DeletionPhase) -> list[tuple[int, Deletion]]:
        """
        Returns the pending entries of a *phase* together with their index.
        """

        return [(index, entry) for index, entry in enumerate(self[phase]) if entry.status is DeletionStatus.PENDING]

    def mark_deleted(self, phase: DeletionPhase, index: int) -> "Deletions":
        entries = list(self[phase])
        entries[index] = replace(entries[index], status=DeletionStatus.DELETED)
        return self.with_phase(phase, tuple(entries))

    def filter_pending(self) -> "Deletions":
        """
        Returns a ledger with only the entries that were not deleted yet.
        """

        result = self
        for phase in DeletionPhase:
            result = result.with_phase(phase, tuple(e for e in self[phase] if e.status is DeletionStatus.PENDING))
        return result

    @staticmethod
    def from_selectors(
        pre_apply: list[ResourceSelector] | None = None,
        post_apply: list[ResourceSelector] | None = None,
        pre_destroy: list[ResourceSelector] | None = None,
    ) -> "Deletions":
        return Deletions(
            pre_apply=tuple(Deletion(s) for s in pre_apply or ()),
            post_apply=tuple(Deletion(s) for s in post_apply or ()),
            pre_destroy=tuple(Deletion(s) for s in pre_destroy or ()),
        )

    @staticmethod
    def load(path: Path) -> "Deletions":
        """
        Load the ledger from a YAML file. A missing file yields an empty ledger.
        """

        if not path.exists():
            logger.debug("Deletions file {} does not exist", path)
            return Deletions()

        data = yaml.safe_load(path.read_text()) or {}
        if not isinstance(data, dict):
            raise ValueError(f"deletions file '{path}' must contain a mapping, got {type(data).__name__}")
        data = {key: value for key, value in data.items() if value is not None}
        file = deser(data, DeletionsFile, filename=str(path))
        return Deletions.from_selectors(file.pre_apply, file.post_apply, file.pre_destroy)

    def dump(self) -> bytes:
        """
        Serialize the selectors of all entries. Statuses are not serialized.
        """

        file = DeletionsFile(
            pre_apply=[e.selector for e in self.pre_apply],
            post_apply=[e.selector for e in self.post_apply],
            pre_destroy=[e.selector for e in self.pre_destroy],
        )
        data: dict[str, Any] = {phase.value: [] for phase in DeletionPhase}
        data.update(ser(file, DeletionsFile, settings=[SerializeDefaults(False)]))
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False).encode()

    def save(self, path: Path, dry_run: bool = False) -> None:
        """
        Write the pending entries of the ledger to *path*.
        """

        write_file(path, self.filter_pending().dump(), dry_run)


@dataclass
class DeletionLedger:
    """
    Tracks the state of the ledger while a run deletes its entries.
    """

    deletions: Deletions

    def run(self, phase: DeletionPhase, kubectl: Kubectl, token: CancelToken | None = None) -> None:
        """
        Delete the pending entries of *phase* one after another. Each entry that was deleted is marked as such, the
        first failure is raised and leaves the remaining entries pending.
        """

        pending = self.deletions.pending(phase)
        if not pending:
            return

        logger.info("Processing {} {} deletions", len(pending), phase.value)
        for index, entry in pending:
            if kubectl.dry_run:
                entry.selector.validate()
                logger.info("Would delete {} (dry run)", entry.selector)
                continue
            logger.info("Deleting {}", entry.selector)
            kubectl.delete_resource(entry.selector, token)
            self.deletions = self.deletions.mark_deleted(phase, index)


@contextmanager
def deletion_ledger(path: Path, dry_run: bool = False) -> Iterator[DeletionLedger]:
    """
    Load the ledger from *path* and write the entries that are still pending back when the context exits, also when
    it exits with an error. No file is created when there was none and nothing is pending.
    """

    ledger = DeletionLedger(Deletions.load(path))
    try:
        yield ledger
    finally:
        pending = ledger.deletions.filter_pending()
        if path.exists() or not pending.is_empty():
            pending.save(path, dry_run)
