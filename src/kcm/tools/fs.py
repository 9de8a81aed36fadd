import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Literal, overload


@overload
def find_config_file(filename: str, cwd: Path | None = None, required: Literal[False] = False) -> Path | None: ...


@overload
def find_config_file(filename: str, cwd: Path | None = None, required: Literal[True] = True) -> Path: ...


def find_config_file(filename: str, cwd: Path | None = None, required: bool = True) -> Path | None:
    """
    Find a file with the given *filename* in the given *cwd* or any of its parent directories.
    """

    if cwd is None:
        cwd = Path.cwd()

    for directory in [cwd] + list(cwd.parents):
        file = directory / filename
        if file.exists():
            return file

    if required:
        raise FileNotFoundError(f"Could not find '{filename}' in '{cwd}' or any of its parent directories.")

    return None


def atomic_write(path: Path, content: bytes, mode: int = 0o660) -> None:
    """
    Replace the contents of *path* with *content*. The data is written to a temporary file in the same directory
    first, which is then renamed over the target, so readers never observe a partially written file.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    with NamedTemporaryFile("wb", dir=path.parent, prefix=f".{path.name}.", delete=False) as fp:
        tmp = Path(fp.name)
        try:
            fp.write(content)
            fp.flush()
            os.fsync(fp.fileno())
        except BaseException:
            fp.close()
            tmp.unlink(missing_ok=True)
            raise

    try:
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
