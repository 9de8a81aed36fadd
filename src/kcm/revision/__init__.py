"""
Revisions pair the manifest that is currently deployed with the manifest that should be deployed next and work out
which resources have to be added, changed or removed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from kcm.hook import HookMap
from kcm.manifest import Manifest, find_matching as find_matching_manifest
from kcm.resource import Resource, find_matching
from kcm.resource.printer import Hint, HintedResource, hinted
from kcm.tools.filechanges import unified_diff


class RevisionStage(str, Enum):
    """
    The stages a revision passes through while it is executed.
    """

    PLANNED = "planned"
    HOOKS_PRE_RUN = "hooks-pre-run"
    DELETIONS_RUN = "deletions-run"
    APPLY_RUN = "apply-run"
    HOOKS_POST_RUN = "hooks-post-run"
    FINALIZED = "finalized"


@dataclass
class ChangeSet:
    """
    The resources of a revision sorted into disjoint buckets, plus the hooks that apply to it.
    """

    added: list[Resource] = field(default_factory=list)
    changed: list[Resource] = field(default_factory=list)
    """ Resources that exist in both manifests but whose content differs. Holds the next version. """

    unchanged: list[Resource] = field(default_factory=list)
    removed: list[Resource] = field(default_factory=list)
    hooks: HookMap = field(default_factory=dict)
    previous: dict[tuple[str, str, str], bytes] = field(default_factory=dict, repr=False)
    """ The current content of the changed resources, by identity. """

    def has_resource_changes(self) -> bool:
        return bool(self.added or self.changed or self.removed)

    def hinted(self) -> list[HintedResource]:
        """
        All resources of the change set annotated with what happens to them, for log output.
        """

        return (
            hinted(self.removed, Hint.REMOVAL)
            + hinted(self.added, Hint.ADDITION)
            + [HintedResource(r, Hint.UPDATE, self.previous.get(r.identity)) for r in self.changed]
            + hinted(self.unchanged, Hint.NO_CHANGE)
        )


@dataclass
class Revision:
    """
    A pair of the *current* and *next* version of a manifest. A revision without a current manifest is an initial
    installation, one without a next manifest is a removal.
    """

    current: Manifest | None
    next: Manifest | None

    def __post_init__(self) -> None:
        if self.current is None and self.next is None:
            raise ValueError("a revision requires at least a current or a next manifest")

    def __str__(self) -> str:
        return self.manifest.name

    @property
    def manifest(self) -> Manifest:
        """
        The most recent manifest of the revision.
        """

        manifest = self.next if self.next is not None else self.current
        assert manifest is not None
        return manifest

    def is_initial(self) -> bool:
        return self.current is None and self.next is not None

    def is_removal(self) -> bool:
        return self.current is not None and self.next is None

    def is_upgrade(self) -> bool:
        return self.current is not None and self.next is not None

    def change_set(self) -> ChangeSet:
        if self.next is None:
            assert self.current is not None
            return ChangeSet(removed=list(self.current.resources), hooks=self.current.hooks)

        if self.current is None:
            return ChangeSet(added=list(self.next.resources), hooks=self.next.hooks)

        changes = ChangeSet(hooks=self.next.hooks)
        for current in self.current.resources:
            match = find_matching(self.next.resources, current)
            if match is None:
                changes.removed.append(current)
            elif match.content == current.content:
                changes.unchanged.append(match)
            else:
                changes.changed.append(match)
                changes.previous[match.identity] = current.content

        for next_ in self.next.resources:
            if find_matching(self.current.resources, next_) is None:
                changes.added.append(next_)

        return changes

    def diff(self, color: bool = True) -> str:
        """
        A unified diff between the content of the current and the next manifest.
        """

        name = self.manifest.filename
        return unified_diff(
            self.current.content().decode() if self.current else "",
            self.next.content().decode() if self.next else "",
            fromfile=f"a/{name}",
            tofile=f"b/{name}",
            color=color,
        )


def build_revisions(current: Sequence[Manifest], next: Sequence[Manifest]) -> list[Revision]:
    """
    Pair up *current* and *next* manifests by name. Revisions for every current manifest come first, in order,
    followed by initial revisions for manifests that only exist in *next*.
    """

    revisions = [Revision(manifest, find_matching_manifest(next, manifest)) for manifest in current]
    revisions += [Revision(None, manifest) for manifest in next if find_matching_manifest(current, manifest) is None]
    return revisions
