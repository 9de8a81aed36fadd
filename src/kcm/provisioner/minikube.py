from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from kcm.provisioner import InfraApplyError, InfraDestroyError, Provisioner
from kcm.tools.executor import CancelToken, CommandError, Executor

MINIKUBE_CONTEXT = "minikube"


@dataclass
class MinikubeProvisioner(Provisioner):
    """
    Runs the cluster in a local minikube VM. Useful for trying out manifests before they go to a real cluster.
    """

    executor: Executor
    program: str = "minikube"

    def is_running(self, token: CancelToken | None = None) -> bool:
        try:
            self.executor.run_silent([self.program, "status"], token=token)
        except CommandError:
            return False
        return True

    def provision(self, token: CancelToken | None = None) -> None:
        if self.is_running(token):
            logger.info("Minikube is already running")
            return

        try:
            self.executor.run([self.program, "start", "--keep-context"], token=token)
        except CommandError as exc:
            raise InfraApplyError("minikube start failed", exc.returncode, exc.output) from exc

    def reconcile(self, token: CancelToken | None = None) -> None:
        if not self.is_running(token):
            logger.info("Minikube is not running and would be started")

    def fetch(self, token: CancelToken | None = None) -> dict[str, Any]:
        return {"kubeconfig": str(Path.home() / ".kube" / "config"), "context": MINIKUBE_CONTEXT}

    def destroy(self, token: CancelToken | None = None) -> None:
        if not self.is_running(token):
            raise InfraDestroyError("minikube is not running")

        try:
            self.executor.run([self.program, "delete"], token=token)
        except CommandError as exc:
            raise InfraDestroyError("minikube delete failed", exc.returncode, exc.output) from exc
