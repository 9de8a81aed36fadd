from dataclasses import dataclass, field

from kcm.errors import KcmError
from kcm.resource import DEFAULT_NAMESPACE


@dataclass
class InvalidSelectorError(KcmError):
    selector: "ResourceSelector"

    def __str__(self) -> str:
        return f"invalid selector for kind {self.selector.kind!r}: either a name or labels must be set"


@dataclass(frozen=True)
class ResourceSelector:
    """
    Selects one or more resources of a kind in a namespace, either by name or by labels. If both are set, the name
    takes precedence.
    """

    kind: str
    name: str | None = None
    namespace: str | None = None
    labels: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        target = self.name if self.name else f"[{self.label_selector()}]"
        return f"{self.kind}/{self.namespace or DEFAULT_NAMESPACE}/{target}"

    def validate(self) -> None:
        if not self.kind or not (self.name or self.labels):
            raise InvalidSelectorError(self)

    def label_selector(self) -> str:
        """
        Format the labels as a `kubectl --selector` value with keys in sorted order.
        """

        return ",".join(f"{key}={self.labels[key]}" for key in sorted(self.labels))
