"""
A manifest is a named set of resources and hooks that is rendered from a template directory and stored as a single
YAML file in the manifests directory between runs.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from loguru import logger

from kcm.hook import Hook, HookMap, HookType, sort_hooks
from kcm.resource import APPLY_ORDER, Head, Resource, load_documents, serialize, sort_resources

MANIFEST_SUFFIXES = (".yaml", ".yml")


@dataclass
class ParseResult:
    resources: list[Resource]
    hooks: HookMap


def parse(blob: bytes | str) -> ParseResult:
    """
    Parse a multi-document YAML stream into resources and hooks. Documents that are not valid YAML or lack a kind or
    name are skipped. Resources are returned in #APPLY_ORDER, hooks are grouped by type and sorted by name and wait
    condition.

    Raises:
        HookError: If a resource carries invalid hook annotations or is of a kind that can't be a hook.
    """

    resources: list[Resource] = []
    hooks: HookMap = {}

    for document in load_documents(blob):
        head = Head.of(document)
        if not head.kind or not head.name:
            logger.trace("Skipping document without kind or name: {}", document)
            continue

        resource = Resource.from_document(document, head)
        if Hook.is_hook(head):
            hook = Hook.from_resource(resource, head.annotations)
            for hook_type in hook.types:
                hooks.setdefault(hook_type, []).append(hook)
        else:
            resources.append(resource)

    return ParseResult(
        resources=sort_resources(resources, APPLY_ORDER),
        hooks={hook_type: sort_hooks(hooks[hook_type]) for hook_type in HookType if hook_type in hooks},
    )


@dataclass
class Manifest:
    """
    A named collection of resources and hooks.
    """

    name: str
    resources: list[Resource] = field(default_factory=list)
    hooks: HookMap = field(default_factory=dict)

    def __str__(self) -> str:
        return self.name

    @property
    def filename(self) -> str:
        return f"{self.name}.yaml"

    @staticmethod
    def from_content(name: str, content: bytes | str) -> "Manifest":
        result = parse(content)
        return Manifest(name, result.resources, result.hooks)

    def matches(self, other: "Manifest") -> bool:
        return self.name == other.name

    def hook_resources(self) -> list[Resource]:
        """
        Returns the resources of all hooks, each hook only once even if it runs at multiple lifecycle points.
        """

        seen: set[tuple[str, str, str]] = set()
        result = []
        for hook_type in HookType:
            for hook in self.hooks.get(hook_type, []):
                if hook.resource.identity not in seen:
                    seen.add(hook.resource.identity)
                    result.append(hook.resource)
        return result

    def content(self) -> bytes:
        """
        The canonical serialization of the manifest: resources in #APPLY_ORDER, followed by the hooks.
        """

        return serialize(sort_resources(self.resources, APPLY_ORDER)) + serialize(self.hook_resources())

    def is_blank(self) -> bool:
        """
        Returns `True` if the manifest contains nothing but whitespace, comments and document separators.
        """

        for line in self.content().decode().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and not line.startswith("---"):
                return False
        return True


def find_matching(haystack: Iterable[Manifest], needle: Manifest) -> Manifest | None:
    for manifest in haystack:
        if manifest.matches(needle):
            return manifest
    return None


def read_dir(directory: Path) -> list[Manifest]:
    """
    Read all manifests from the YAML files in *directory*, sorted by name. A missing directory yields no manifests,
    subdirectories are ignored.
    """

    if not directory.is_dir():
        return []

    manifests = []
    for file in sorted(directory.iterdir()):
        if not file.is_file() or file.suffix not in MANIFEST_SUFFIXES:
            continue
        logger.debug("Reading manifest {}", file)
        manifests.append(Manifest.from_content(file.stem, file.read_bytes()))

    return manifests
