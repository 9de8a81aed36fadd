from pathlib import Path

import pytest
import yaml

from kcm.credentials import Credentials
from kcm.deletions import DeletionLedger, DeletionPhase, Deletions, DeletionStatus, deletion_ledger
from kcm.kubectl import Kubectl, KubectlError
from kcm.resource.selector import ResourceSelector
from kcm.tools.mock_executor import MockExecutor

LEDGER = """\
preApply:
- kind: Pod
  name: foo
  namespace: kube-system
postApply:
- kind: ConfigMap
  labels:
    app: legacy
preDestroy:
"""


def _kubectl(executor: MockExecutor, dry_run: bool = False) -> Kubectl:
    return Kubectl(Credentials(kubeconfig="/kubeconfig"), executor, dry_run=dry_run, sleep=lambda _: None)


def test__Deletions__load(tmp_path: Path) -> None:
    assert Deletions.load(tmp_path / "missing.yaml").is_empty()

    file = tmp_path / "deletions.yaml"
    file.write_text(LEDGER)
    deletions = Deletions.load(file)

    assert deletions[DeletionPhase.PRE_APPLY][0].selector == ResourceSelector(
        kind="Pod", name="foo", namespace="kube-system"
    )
    assert deletions[DeletionPhase.POST_APPLY][0].selector == ResourceSelector(
        kind="ConfigMap", labels={"app": "legacy"}
    )
    assert deletions[DeletionPhase.PRE_DESTROY] == ()
    assert all(e.status is DeletionStatus.PENDING for e in deletions.pre_apply + deletions.post_apply)


def test__Deletions__dump(tmp_path: Path) -> None:
    file = tmp_path / "deletions.yaml"
    file.write_text(LEDGER)

    assert yaml.safe_load(Deletions.load(file).dump()) == {
        "preApply": [{"kind": "Pod", "name": "foo", "namespace": "kube-system"}],
        "postApply": [{"kind": "ConfigMap", "labels": {"app": "legacy"}}],
        "preDestroy": [],
    }
    assert yaml.safe_load(Deletions().dump()) == {"preApply": [], "postApply": [], "preDestroy": []}


def test__Deletions__mark_deleted_and_filter_pending() -> None:
    deletions = Deletions.from_selectors(
        pre_apply=[ResourceSelector(kind="Pod", name="a"), ResourceSelector(kind="Pod", name="b")],
        pre_destroy=[ResourceSelector(kind="Pod", name="c")],
    )

    marked = deletions.mark_deleted(DeletionPhase.PRE_APPLY, 0)

    assert deletions.pre_apply[0].status is DeletionStatus.PENDING
    assert marked.pre_apply[0].status is DeletionStatus.DELETED
    assert [i for i, _ in marked.pending(DeletionPhase.PRE_APPLY)] == [1]

    filtered = marked.filter_pending()
    assert [e.selector.name for e in filtered.pre_apply] == ["b"]
    assert [e.selector.name for e in filtered.pre_destroy] == ["c"]
    assert filtered.filter_pending() == filtered


def test__DeletionLedger__run() -> None:
    executor = MockExecutor()
    ledger = DeletionLedger(
        Deletions.from_selectors(post_apply=[ResourceSelector(kind="Pod", name="a", namespace="ns")])
    )

    ledger.run(DeletionPhase.PRE_APPLY, _kubectl(executor))
    assert executor.commands == []

    ledger.run(DeletionPhase.POST_APPLY, _kubectl(executor))
    assert executor.commands == ["kubectl delete pod a --namespace ns --ignore-not-found --kubeconfig /kubeconfig"]
    assert ledger.deletions.filter_pending().is_empty()


def test__DeletionLedger__run_stops_at_first_failure() -> None:
    executor = MockExecutor().expect("kubectl delete pod b *", returncode=1)
    ledger = DeletionLedger(
        Deletions.from_selectors(
            pre_apply=[
                ResourceSelector(kind="Pod", name="a"),
                ResourceSelector(kind="Pod", name="b"),
                ResourceSelector(kind="Pod", name="c"),
            ]
        )
    )

    with pytest.raises(KubectlError):
        ledger.run(DeletionPhase.PRE_APPLY, _kubectl(executor))

    assert len(executor.commands) == 2
    assert [e.selector.name for e in ledger.deletions.filter_pending().pre_apply] == ["b", "c"]


def test__DeletionLedger__run_dry_run() -> None:
    executor = MockExecutor()
    ledger = DeletionLedger(Deletions.from_selectors(pre_apply=[ResourceSelector(kind="Pod", name="a")]))

    ledger.run(DeletionPhase.PRE_APPLY, _kubectl(executor, dry_run=True))

    assert executor.commands == []
    assert len(ledger.deletions.filter_pending().pre_apply) == 1


def test__deletion_ledger__retried_on_next_run(tmp_path: Path) -> None:
    file = tmp_path / "deletions.yaml"
    file.write_text("preApply:\n- kind: Pod\n  name: foo\n  namespace: kube-system\n")

    executor = MockExecutor().expect("kubectl delete pod foo *", output="connection refused", returncode=1)
    with pytest.raises(KubectlError):
        with deletion_ledger(file) as ledger:
            ledger.run(DeletionPhase.PRE_APPLY, _kubectl(executor))

    assert yaml.safe_load(file.read_text())["preApply"] == [{"kind": "Pod", "name": "foo", "namespace": "kube-system"}]

    with deletion_ledger(file) as ledger:
        ledger.run(DeletionPhase.PRE_APPLY, _kubectl(executor))

    assert yaml.safe_load(file.read_text()) == {"preApply": [], "postApply": [], "preDestroy": []}
    assert len(executor.commands) == 2


def test__deletion_ledger__does_not_create_empty_file(tmp_path: Path) -> None:
    file = tmp_path / "deletions.yaml"

    with deletion_ledger(file) as ledger:
        ledger.run(DeletionPhase.PRE_APPLY, _kubectl(MockExecutor()))

    assert not file.exists()
