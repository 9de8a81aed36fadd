from pathlib import Path

import pytest

from kcm.hook import HookType, UnsupportedHookKindError
from kcm.manifest import Manifest, find_matching, parse, read_dir

CONTENT = b"""\
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: d-a
---
apiVersion: batch/v1
kind: Job
metadata:
  name: migrate
  annotations:
    kcm/hooks: pre-apply,post-apply
    kcm/wait-for: condition=complete
---
apiVersion: batch/v1
kind: Job
metadata:
  name: cleanup
  annotations:
    kcm/hooks: pre-delete
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: cm-a
"""


def test__parse() -> None:
    result = parse(CONTENT)

    assert [str(r) for r in result.resources] == ["ConfigMap/default/cm-a", "Deployment/default/d-a"]
    assert {t: [h.resource.name for h in hooks] for t, hooks in result.hooks.items()} == {
        HookType.PRE_APPLY: ["migrate"],
        HookType.POST_APPLY: ["migrate"],
        HookType.PRE_DELETE: ["cleanup"],
    }


def test__parse__unsupported_hook_kind() -> None:
    with pytest.raises(UnsupportedHookKindError):
        parse(b"kind: Pod\nmetadata:\n  name: p\n  annotations:\n    kcm/hooks: pre-apply\n")


def test__Manifest__content_is_canonical() -> None:
    manifest = Manifest.from_content("m1", CONTENT)
    content = manifest.content()

    assert content.count(b"---\n") == 4
    assert content.index(b"kind: ConfigMap") < content.index(b"kind: Deployment") < content.index(b"name: migrate")
    assert Manifest.from_content("m1", content).content() == content
    assert manifest.filename == "m1.yaml"
    assert not manifest.is_blank()


def test__Manifest__is_blank() -> None:
    assert Manifest("empty").is_blank()
    assert Manifest.from_content("empty", b"---\n# nothing here\n---\n").is_blank()


def test__find_matching() -> None:
    a, b = Manifest("a"), Manifest("b")
    assert find_matching([a, b], Manifest("b")) is b
    assert find_matching([a], Manifest("c")) is None


def test__read_dir(tmp_path: Path) -> None:
    assert read_dir(tmp_path / "missing") == []

    (tmp_path / "kube-system.yaml").write_bytes(CONTENT)
    (tmp_path / "apps.yml").write_bytes(b"kind: ConfigMap\nmetadata:\n  name: x\n")
    (tmp_path / "README.md").write_text("ignored")
    (tmp_path / "nested.yaml").mkdir()

    manifests = read_dir(tmp_path)

    assert [m.name for m in manifests] == ["apps", "kube-system"]
    assert len(manifests[1].resources) == 2
