"""
Hooks are Jobs that are run at specific points while a manifest is applied to or removed from a cluster. A resource
becomes a hook by carrying the `kcm/hooks` annotation:

```yaml
apiVersion: batch/v1
kind: Job
metadata:
  name: migrate-database
  annotations:
    kcm/hooks: pre-apply
    kcm/wait-for: condition=complete
    kcm/wait-timeout: 5m
    kcm/delete-after-completion: "true"
```
"""

from dataclasses import dataclass, field
from enum import Enum

from kcm.errors import KcmError
from kcm.resource import JOB, Head, Resource
from kcm.tools.duration import parse_duration

HOOKS_ANNOTATION = "kcm/hooks"
POLICY_ANNOTATION = "kcm/hook-policy"
WAIT_FOR_ANNOTATION = "kcm/wait-for"
WAIT_TIMEOUT_ANNOTATION = "kcm/wait-timeout"
DELETE_AFTER_COMPLETION_ANNOTATION = "kcm/delete-after-completion"

LEGACY_HOOK_ANNOTATION = "kcm/hook"
LEGACY_WAIT_FOR_ANNOTATION = "kcm/hook-wait-for"
LEGACY_WAIT_TIMEOUT_ANNOTATION = "kcm/hook-wait-timeout"

POLICY_DELETE_AFTER_COMPLETION = "delete-after-completion"


class HookType(str, Enum):
    PRE_APPLY = "pre-apply"
    POST_APPLY = "post-apply"
    PRE_DELETE = "pre-delete"
    POST_DELETE = "post-delete"


LEGACY_HOOK_TYPES = {
    "pre-create": HookType.PRE_APPLY,
    "pre-upgrade": HookType.PRE_APPLY,
    "post-create": HookType.POST_APPLY,
    "post-upgrade": HookType.POST_APPLY,
}
""" Hook type names that are still accepted and the type they map to. """


class HookError(KcmError):
    """
    Raised when the hook annotations of a resource are invalid.
    """


@dataclass
class UnsupportedHookKindError(HookError):
    kind: str
    name: str

    def __str__(self) -> str:
        return f"unsupported hook kind {self.kind!r} for hook {self.name!r}, only {JOB!r} is supported"


@dataclass
class Hook:
    """
    A resource that is applied at one or more lifecycle points of a manifest.
    """

    resource: Resource
    types: list[HookType]
    policy: str = ""
    """ The raw value of the `kcm/hook-policy` annotation. """

    wait_for: str = ""
    """ The condition that is passed to `kubectl wait --for` after the hook was applied. """

    wait_timeout: float | None = None
    """ The maximum number of seconds to wait for the condition. """

    delete_after_completion: bool = field(default=False)
    """ Whether to delete the hook Job after the wait condition was met. """

    def __str__(self) -> str:
        result = f"{','.join(t.value for t in self.types)}/{self.resource}"
        if self.wait_for:
            result += f" (wait-for={self.wait_for}"
            if self.wait_timeout:
                result += f", wait-timeout={self.wait_timeout:g}s"
            result += ")"
        return result

    @staticmethod
    def is_hook(head: Head) -> bool:
        return HOOKS_ANNOTATION in head.annotations or LEGACY_HOOK_ANNOTATION in head.annotations

    @staticmethod
    def from_resource(resource: Resource, annotations: dict[str, str]) -> "Hook":
        """
        Create a hook from a resource and its annotations.

        Raises:
            UnsupportedHookKindError: If the resource is not a Job.
            HookError: If the annotations are invalid.
        """

        if resource.kind != JOB:
            raise UnsupportedHookKindError(resource.kind, resource.name)

        raw_types = annotations.get(HOOKS_ANNOTATION, annotations.get(LEGACY_HOOK_ANNOTATION, ""))
        types = parse_hook_types(raw_types)
        if not types:
            raise HookError(f"hook {resource} does not declare any hook types")

        wait_for = annotations.get(WAIT_FOR_ANNOTATION, annotations.get(LEGACY_WAIT_FOR_ANNOTATION, "")).strip()

        wait_timeout: float | None = None
        raw_timeout = annotations.get(WAIT_TIMEOUT_ANNOTATION, annotations.get(LEGACY_WAIT_TIMEOUT_ANNOTATION))
        if raw_timeout:
            try:
                wait_timeout = parse_duration(raw_timeout)
            except ValueError as exc:
                message = f"failed to parse annotation {WAIT_TIMEOUT_ANNOTATION} of hook {resource}: {exc}"
                raise HookError(message) from exc

        policy = annotations.get(POLICY_ANNOTATION, "").strip()
        policies = [p.strip() for p in policy.split(",") if p.strip()]
        for p in policies:
            if p != POLICY_DELETE_AFTER_COMPLETION:
                raise HookError(
                    f"invalid hook policy {p!r} for hook {resource}, allowed values: {POLICY_DELETE_AFTER_COMPLETION}"
                )

        delete_after_completion = POLICY_DELETE_AFTER_COMPLETION in policies
        raw_delete = annotations.get(DELETE_AFTER_COMPLETION_ANNOTATION, "").strip().lower()
        if raw_delete in ("true", "yes", "1"):
            delete_after_completion = True
        elif raw_delete not in ("", "false", "no", "0"):
            raise HookError(f"invalid value {raw_delete!r} for annotation {DELETE_AFTER_COMPLETION_ANNOTATION}")

        if delete_after_completion and not wait_for:
            raise HookError(
                f"hook {resource} is deleted after completion, which requires the {WAIT_FOR_ANNOTATION} annotation "
                "with a valid condition"
            )

        return Hook(
            resource=resource,
            types=types,
            policy=policy,
            wait_for=wait_for,
            wait_timeout=wait_timeout,
            delete_after_completion=delete_after_completion,
        )


def parse_hook_types(value: str) -> list[HookType]:
    """
    Parse a comma separated list of hook types, mapping legacy names to their canonical type.

    Raises:
        HookError: If one of the types is unknown.
    """

    result: list[HookType] = []
    for name in (part.strip() for part in value.split(",")):
        if not name:
            continue
        if name in LEGACY_HOOK_TYPES:
            hook_type = LEGACY_HOOK_TYPES[name]
        else:
            try:
                hook_type = HookType(name)
            except ValueError:
                allowed = ", ".join([t.value for t in HookType] + list(LEGACY_HOOK_TYPES))
                raise HookError(f"invalid hook type {name!r}, allowed values: {allowed}")
        if hook_type not in result:
            result.append(hook_type)
    return result


def sort_hooks(hooks: list[Hook]) -> list[Hook]:
    """
    Sort hooks by the name of their resource and then by their wait condition.
    """

    return sorted(hooks, key=lambda hook: (hook.resource.name, hook.wait_for))


HookMap = dict[HookType, list[Hook]]
""" Hooks indexed by the lifecycle type they run at. """
