from dataclasses import dataclass, field
import difflib
from pathlib import Path

from loguru import logger
import typer

from kcm.tools.fs import atomic_write

DIFF_CONTEXT_LINES = 5
FILE_MODE = 0o660


def unified_diff(a: str, b: str, fromfile: str, tofile: str, color: bool = True) -> str:
    """
    Render a unified diff between the strings *a* and *b*. Returns an empty string if they are equal.
    """

    lines = difflib.unified_diff(
        a.splitlines(keepends=True),
        b.splitlines(keepends=True),
        fromfile=fromfile,
        tofile=tofile,
        n=DIFF_CONTEXT_LINES,
    )

    result = []
    for line in lines:
        if not line.endswith("\n"):
            line += "\n"
        if color:
            if line.startswith("+") and not line.startswith("+++"):
                line = typer.style(line, fg=typer.colors.GREEN)
            elif line.startswith("-") and not line.startswith("---"):
                line = typer.style(line, fg=typer.colors.RED)
            elif line.startswith("@@"):
                line = typer.style(line, fg=typer.colors.CYAN)
        result.append(line)

    return "".join(result)


@dataclass
class FileChangeSet:
    """
    The pending change of a file's content. The current content is read when the change set is created; a file
    that does not exist is treated as empty.
    """

    path: Path
    changes: bytes
    content: bytes = field(init=False)

    def __post_init__(self) -> None:
        self.content = self.path.read_bytes() if self.path.exists() else b""

    def has_changes(self) -> bool:
        return self.content != self.changes

    def diff(self, color: bool = True) -> str:
        return unified_diff(
            self.content.decode(errors="replace"),
            self.changes.decode(errors="replace"),
            fromfile=f"a/{self.path.name}",
            tofile=f"b/{self.path.name}",
            color=color,
        )

    def apply(self) -> None:
        """
        Atomically replace the file with the new content.
        """

        atomic_write(self.path, self.changes, FILE_MODE)
        self.content = self.changes


def write_file(path: Path, content: bytes, dry_run: bool = False) -> bool:
    """
    Write *content* to *path* if it differs from what is on disk, logging the diff either way. In dry-run mode the
    file is left untouched. Returns whether the file had changes.
    """

    changes = FileChangeSet(path, content)
    if not changes.has_changes():
        logger.debug("No changes to {}", path)
        return False

    logger.info("Changes to {}:\n{}", path, changes.diff())
    if dry_run:
        logger.info("Would write {} (dry run)", path)
    else:
        changes.apply()
        logger.debug("Wrote {}", path)

    return True
