from pathlib import Path
from typing import Iterator

from loguru import logger
import pytest
import yaml

from kcm.cluster import ClusterManager, ManagerOptions
from kcm.credentials import Credentials, EmptyCredentialsError, StaticCredentialSource
from kcm.kubectl import KubectlError
from kcm.provisioner.terraform import TerraformProvisioner
from kcm.renderer.jinja import JinjaRenderer
from kcm.tools.mock_executor import MockExecutor

CONFIGMAP = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: test
  namespace: kube-system
data:
  foo: {{ foo }}
  baz: {{ Values.baz }}
"""

DELETIONS = """\
preApply:
- kind: Pod
  name: foo
  namespace: kube-system
postApply:
- kind: Deployment
  name: bar
"""


@pytest.fixture
def messages() -> Iterator[list[str]]:
    result: list[str] = []
    handler_id = logger.add(lambda message: result.append(str(message)), format="{message}", level="DEBUG")
    yield result
    logger.remove(handler_id)


def _setup(tmp_path: Path) -> tuple[ClusterManager, MockExecutor, ManagerOptions]:
    (tmp_path / "templates" / "kube-system").mkdir(parents=True)
    (tmp_path / "templates" / "kube-system" / "configmap.yaml").write_text(CONFIGMAP)
    (tmp_path / "values.yaml").write_text("baz: somevalue\n")
    (tmp_path / "deletions.yaml").write_text(DELETIONS)

    executor = MockExecutor().expect(
        "terraform output -json", output='{"foo": {"value": "output-from-terraform"}}', times=None
    )
    manager = ClusterManager(
        StaticCredentialSource(Credentials(context="test")),
        TerraformProvisioner(executor, tmp_path),
        JinjaRenderer(tmp_path / "templates"),
        executor,
    )
    options = ManagerOptions(
        values=tmp_path / "values.yaml",
        manifests_dir=tmp_path / "manifests",
        deletions=tmp_path / "deletions.yaml",
    )
    return manager, executor, options


def test__ClusterManager__provision(tmp_path: Path) -> None:
    manager, executor, options = _setup(tmp_path)

    manager.provision(options)

    assert executor.commands == [
        "terraform init -input=false",
        "terraform apply -input=false -auto-approve",
        "terraform output -json",
        "kubectl cluster-info --context test",
        "kubectl delete pod foo --namespace kube-system --ignore-not-found --context test",
        "kubectl apply -f - --context test",
        "kubectl delete deployment bar --namespace default --ignore-not-found --context test",
    ]
    assert yaml.safe_load((tmp_path / "values.yaml").read_text()) == {
        "baz": "somevalue",
        "foo": "output-from-terraform",
    }
    assert yaml.safe_load((tmp_path / "deletions.yaml").read_text()) == {
        "preApply": [],
        "postApply": [],
        "preDestroy": [],
    }
    manifest = yaml.safe_load((tmp_path / "manifests" / "kube-system.yaml").read_text())
    assert manifest["data"] == {"baz": "somevalue", "foo": "output-from-terraform"}


def test__ClusterManager__provision_dry_run(tmp_path: Path, messages: list[str]) -> None:
    manager, executor, options = _setup(tmp_path)
    options.dry_run = True

    manager.provision(options)

    assert executor.commands == [
        "terraform init -input=false",
        "terraform plan -input=false -detailed-exitcode",
        "terraform output -json",
    ]
    assert (tmp_path / "values.yaml").read_text() == "baz: somevalue\n"
    assert (tmp_path / "deletions.yaml").read_text() == DELETIONS
    assert not (tmp_path / "manifests").exists()
    assert any("+foo: output-from-terraform" in message for message in messages)
    assert any("Would delete Pod/kube-system/foo" in message for message in messages)


def test__ClusterManager__provision_only_manifest_skip_manifests(tmp_path: Path) -> None:
    manager, executor, options = _setup(tmp_path)
    options.only_manifest = True
    options.skip_manifests = True

    manager.provision(options)

    assert executor.commands == ["terraform output -json"]
    assert "foo: output-from-terraform" in (tmp_path / "values.yaml").read_text()
    assert len(yaml.safe_load((tmp_path / "deletions.yaml").read_text())["preApply"]) == 1


def test__ClusterManager__apply_manifests_empty_credentials(tmp_path: Path) -> None:
    manager, executor, options = _setup(tmp_path)
    manager.credential_source = StaticCredentialSource(Credentials())

    with pytest.raises(EmptyCredentialsError):
        manager.apply_manifests(options)

    assert not any(command.startswith("kubectl") for command in executor.commands)
    assert yaml.safe_load((tmp_path / "deletions.yaml").read_text())["postApply"] == [
        {"kind": "Deployment", "name": "bar"}
    ]


def test__ClusterManager__apply_manifests_keeps_failed_deletions(tmp_path: Path) -> None:
    manager, executor, options = _setup(tmp_path)
    executor.expect("kubectl delete pod foo *", output="connection refused", returncode=1)

    with pytest.raises(KubectlError):
        manager.apply_manifests(options)

    assert not any(command.startswith("kubectl apply") for command in executor.commands)
    assert yaml.safe_load((tmp_path / "deletions.yaml").read_text()) == {
        "preApply": [{"kind": "Pod", "name": "foo", "namespace": "kube-system"}],
        "postApply": [{"kind": "Deployment", "name": "bar"}],
        "preDestroy": [],
    }


def test__ClusterManager__destroy(tmp_path: Path) -> None:
    manager, executor, options = _setup(tmp_path)
    (tmp_path / "deletions.yaml").write_text("preDestroy:\n- kind: PersistentVolumeClaim\n  labels:\n    app: db\n")
    (tmp_path / "manifests").mkdir()
    (tmp_path / "manifests" / "a.yaml").write_text("kind: ConfigMap\nmetadata:\n  name: a\n")
    (tmp_path / "manifests" / "b.yaml").write_text("kind: ConfigMap\nmetadata:\n  name: b\n")

    manager.destroy(options)

    assert executor.commands == [
        "kubectl cluster-info --context test",
        "kubectl delete -f - --ignore-not-found --context test",
        "kubectl delete -f - --ignore-not-found --context test",
        "kubectl delete persistentvolumeclaim --selector=app=db --namespace default --ignore-not-found --context test",
        "terraform init -input=false",
        "terraform destroy -input=false -auto-approve",
    ]
    assert b"name: b" in (executor.calls[1].input or b"")
    assert b"name: a" in (executor.calls[2].input or b"")
    assert list((tmp_path / "manifests").iterdir()) == []


def test__ClusterManager__destroy_dry_run(tmp_path: Path) -> None:
    manager, executor, options = _setup(tmp_path)
    (tmp_path / "manifests").mkdir()
    (tmp_path / "manifests" / "a.yaml").write_text("kind: ConfigMap\nmetadata:\n  name: a\n")
    options.dry_run = True

    manager.destroy(options)

    assert executor.commands == []
    assert (tmp_path / "manifests" / "a.yaml").exists()


def test__ClusterManager__delete_manifests_renders_again(tmp_path: Path) -> None:
    manager, executor, options = _setup(tmp_path)
    options.include_unchanged = True

    manager.delete_manifests(options)

    assert executor.commands == [
        "terraform output -json",
        "kubectl cluster-info --context test",
        "kubectl delete -f - --ignore-not-found --context test",
    ]
    assert b"foo: output-from-terraform" in (executor.calls[2].input or b"")
