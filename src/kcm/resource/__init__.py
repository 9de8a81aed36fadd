"""
Kubernetes resources as kcm sees them: a kind, a name, a namespace and the canonical YAML content of the document.
"""

from dataclasses import dataclass
import re
from typing import Any, Iterable, Iterator, Sequence

from loguru import logger
import yaml

DEFAULT_NAMESPACE = "default"

DELETION_POLICY_ANNOTATION = "kcm/deletion-policy"
DELETION_POLICY_DELETE_PVCS = "delete-pvcs"

JOB = "Job"
PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
STATEFUL_SET = "StatefulSet"

APPLY_ORDER: tuple[str, ...] = (
    "Namespace",
    "ResourceQuota",
    "LimitRange",
    "PodSecurityPolicy",
    "PodDisruptionBudget",
    "Secret",
    "ConfigMap",
    "StorageClass",
    "PersistentVolume",
    PERSISTENT_VOLUME_CLAIM,
    "ServiceAccount",
    "CustomResourceDefinition",
    "ClusterRole",
    "ClusterRoleBinding",
    "Role",
    "RoleBinding",
    "Service",
    "DaemonSet",
    "Pod",
    "ReplicationController",
    "ReplicaSet",
    "Deployment",
    STATEFUL_SET,
    JOB,
    "CronJob",
    "Ingress",
    "APIService",
)
"""
The order in which resources are applied to a cluster. Namespaces and cluster-wide resources come first so that
everything that depends on them can be created, workloads come last.
"""

DELETE_ORDER: tuple[str, ...] = tuple(reversed(APPLY_ORDER))
""" The order in which resources are deleted from a cluster, the exact reverse of #APPLY_ORDER. """

_DOCUMENT_SEPARATOR = re.compile(r"^---(?:[ \t].*)?$", re.MULTILINE)


@dataclass(frozen=True)
class Head:
    """
    The parts of a Kubernetes document that kcm looks at.
    """

    kind: str
    name: str
    namespace: str
    annotations: dict[str, str]

    @staticmethod
    def of(document: dict[str, Any]) -> "Head":
        metadata = document.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        annotations = metadata.get("annotations")
        if not isinstance(annotations, dict):
            annotations = {}

        return Head(
            kind=str(document.get("kind") or ""),
            name=str(metadata.get("name") or ""),
            namespace=str(metadata.get("namespace") or DEFAULT_NAMESPACE),
            annotations={str(k): "" if v is None else str(v) for k, v in annotations.items()},
        )


@dataclass
class Resource:
    """
    A single Kubernetes document.
    """

    kind: str
    name: str
    namespace: str = DEFAULT_NAMESPACE
    content: bytes = b""
    """ The canonical YAML serialization of the document, used to detect changes between revisions. """

    delete_persistent_volume_claims: bool = False
    """
    Set on StatefulSets annotated with `kcm/deletion-policy: delete-pvcs`. The claims created from the volume claim
    templates of such a StatefulSet are deleted together with it.
    """

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.kind, self.namespace, self.name)

    def matches(self, other: "Resource") -> bool:
        """
        Returns `True` if *other* refers to the same Kubernetes object, regardless of its content.
        """

        return self.identity == other.identity

    @staticmethod
    def from_document(document: dict[str, Any], head: Head | None = None) -> "Resource":
        if head is None:
            head = Head.of(document)

        return Resource(
            kind=head.kind,
            name=head.name,
            namespace=head.namespace,
            content=encode_document(document),
            delete_persistent_volume_claims=head.kind == STATEFUL_SET
            and head.annotations.get(DELETION_POLICY_ANNOTATION) == DELETION_POLICY_DELETE_PVCS,
        )


def encode_document(document: dict[str, Any]) -> bytes:
    """
    Serialize a document in a stable way so that semantically equal documents compare equal byte by byte.
    """

    return yaml.safe_dump(document, sort_keys=True, default_flow_style=False, allow_unicode=True).encode()


def load_documents(blob: bytes | str) -> Iterator[dict[str, Any]]:
    """
    Split a multi-document YAML stream and yield every document that is a mapping. Documents that cannot be parsed
    are skipped.
    """

    text = blob.decode() if isinstance(blob, bytes) else blob
    for index, chunk in enumerate(_DOCUMENT_SEPARATOR.split(text)):
        try:
            document = yaml.safe_load(chunk)
        except yaml.YAMLError as exc:
            logger.debug("Skipping malformed YAML document #{}: {}", index, exc)
            continue
        if document is None:
            continue
        if not isinstance(document, dict):
            logger.debug("Skipping YAML document #{} that is not a mapping", index)
            continue
        yield document


def sort_resources(
    resources: Iterable[Resource], order: Sequence[str], unknown_first: bool = False
) -> list[Resource]:
    """
    Return a new list with the *resources* sorted by the position of their kind in *order*. Kinds that do not appear
    in *order* are placed at the end, or at the start if *unknown_first* is set, sorted by kind. Ties are broken by
    name.
    """

    ranks = {kind: index for index, kind in enumerate(order)}
    unknown = -1 if unknown_first else len(order)

    def _key(resource: Resource) -> tuple[int, str, str]:
        rank = ranks.get(resource.kind, unknown)
        return (rank, resource.kind if rank == unknown else "", resource.name)

    return sorted(resources, key=_key)


def find_matching(haystack: Iterable[Resource], needle: Resource) -> Resource | None:
    for resource in haystack:
        if resource.matches(needle):
            return resource
    return None


def serialize(resources: Iterable[Resource]) -> bytes:
    """
    Concatenate the content of the *resources* into a multi-document YAML stream that can be fed to `kubectl`.
    """

    parts = []
    for resource in resources:
        parts.append(b"---\n")
        parts.append(resource.content)
        if not resource.content.endswith(b"\n"):
            parts.append(b"\n")
    return b"".join(parts)
