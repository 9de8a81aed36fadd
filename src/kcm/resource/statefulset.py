from typing import Iterable

from loguru import logger
import yaml

from kcm.resource import PERSISTENT_VOLUME_CLAIM, STATEFUL_SET, Resource
from kcm.resource.selector import ResourceSelector


def persistent_volume_claims_for_deletion(resources: Iterable[Resource]) -> list[ResourceSelector]:
    """
    Derive selectors for the PersistentVolumeClaims that were created from the volume claim templates of every
    StatefulSet in *resources* that is annotated with `kcm/deletion-policy: delete-pvcs`. Kubernetes keeps these
    claims around when a StatefulSet is deleted, so kcm deletes them after the StatefulSet is gone.
    """

    claims: list[ResourceSelector] = []

    for resource in resources:
        if resource.kind != STATEFUL_SET or not resource.delete_persistent_volume_claims:
            continue

        try:
            document = yaml.safe_load(resource.content)
            spec = document.get("spec") or {}
            replicas = max(int(spec.get("replicas") or 0), 1)
            templates = [str(t["metadata"]["name"]) for t in spec.get("volumeClaimTemplates") or []]
        except (yaml.YAMLError, AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.error("Error while parsing StatefulSet {}: {}", resource, exc)
            continue

        for template in templates:
            for ordinal in range(replicas):
                claims.append(
                    ResourceSelector(
                        kind=PERSISTENT_VOLUME_CLAIM,
                        name=f"{template}-{resource.name}-{ordinal}",
                        namespace=resource.namespace,
                    )
                )

    return claims
