from dataclasses import dataclass
from enum import Enum
from textwrap import indent
from typing import Iterable, Sequence

import typer

from kcm.resource import Resource
from kcm.tools.filechanges import unified_diff


class Hint(Enum):
    """
    Describes what happens to a resource, used to decorate it in log output.
    """

    NO_CHANGE = "no change"
    ADDITION = "addition"
    UPDATE = "update"
    REMOVAL = "removal"

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]

    @property
    def color(self) -> str | None:
        return _COLORS.get(self)


_PREFIXES = {Hint.NO_CHANGE: "*", Hint.ADDITION: "+", Hint.UPDATE: "~", Hint.REMOVAL: "-"}
_COLORS = {Hint.ADDITION: typer.colors.GREEN, Hint.UPDATE: typer.colors.YELLOW, Hint.REMOVAL: typer.colors.RED}


@dataclass
class HintedResource:
    resource: Resource
    hint: Hint
    previous: bytes | None = None
    """ For updates, the content the resource had before. Used to show a diff. """

    def format(self, color: bool = True) -> str:
        def _style(text: str) -> str:
            return typer.style(text, fg=self.hint.color) if color and self.hint.color else text

        line = f"{_style(self.hint.prefix)} {_style(str(self.resource))}"
        if self.hint is Hint.UPDATE and self.previous is not None:
            diff = unified_diff(
                self.previous.decode(errors="replace"),
                self.resource.content.decode(errors="replace"),
                fromfile="current",
                tofile="next",
                color=color,
            )
            if diff:
                line += "\n\n" + indent(diff.strip("\n"), "  ")
        return line


def hinted(resources: Iterable[Resource], hint: Hint) -> list[HintedResource]:
    return [HintedResource(resource, hint) for resource in resources]


def format_resources(items: Sequence[HintedResource], color: bool = True) -> str:
    """
    Format resources for log output, one per line, preceded by a summary of the hints, e.g.

        3 resources (+ addition: 2, ~ update: 1)
    """

    if not items:
        return ""

    counts = {hint: sum(1 for item in items if item.hint is hint) for hint in Hint}
    summary = ", ".join(f"{hint.prefix} {hint.value}: {count}" for hint, count in counts.items() if count)
    lines = [f"{len(items)} resources ({summary})"]
    lines.extend(indent(item.format(color), "  ") for item in items)
    return "\n".join(lines)
