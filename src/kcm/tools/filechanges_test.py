from pathlib import Path
import stat

from kcm.tools.filechanges import FileChangeSet, unified_diff, write_file


def test__FileChangeSet__missing_file_is_empty(tmp_path: Path) -> None:
    changes = FileChangeSet(tmp_path / "values.yaml", b"foo: bar\n")
    assert changes.content == b""
    assert changes.has_changes()
    assert "+foo: bar" in changes.diff(color=False)


def test__FileChangeSet__no_changes(tmp_path: Path) -> None:
    file = tmp_path / "values.yaml"
    file.write_bytes(b"foo: bar\n")

    changes = FileChangeSet(file, b"foo: bar\n")
    assert not changes.has_changes()
    assert changes.diff() == ""


def test__FileChangeSet__apply(tmp_path: Path) -> None:
    file = tmp_path / "manifests" / "m1.yaml"

    changes = FileChangeSet(file, b"kind: ConfigMap\n")
    changes.apply()

    assert file.read_bytes() == b"kind: ConfigMap\n"
    assert stat.S_IMODE(file.stat().st_mode) == 0o660
    assert not changes.has_changes()
    assert [p.name for p in file.parent.iterdir()] == ["m1.yaml"]


def test__write_file__dry_run_leaves_file_untouched(tmp_path: Path) -> None:
    file = tmp_path / "values.yaml"
    file.write_bytes(b"foo: bar\n")

    assert write_file(file, b"foo: baz\n", dry_run=True)
    assert file.read_bytes() == b"foo: bar\n"

    assert write_file(file, b"foo: baz\n")
    assert file.read_bytes() == b"foo: baz\n"

    assert not write_file(file, b"foo: baz\n")


def test__unified_diff() -> None:
    diff = unified_diff("a\nb\n", "a\nc\n", "a/x", "b/x", color=False)
    assert diff.splitlines() == ["--- a/x", "+++ b/x", "@@ -1,2 +1,2 @@", " a", "-b", "+c"]
