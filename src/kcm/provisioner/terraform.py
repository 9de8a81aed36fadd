from dataclasses import dataclass
import json
from pathlib import Path
import re
from typing import Any

from loguru import logger

from kcm.provisioner import InfraApplyError, InfraDestroyError, InfraPlanError, Provisioner, ProvisionerError
from kcm.tools.executor import CancelToken, CommandError, Executor

PLAN_CHANGES_PENDING = 2
""" The exit code of `terraform plan -detailed-exitcode` when the plan contains changes. """

_NO_ROOT_MODULE = re.compile(r"module root could not be found|no outputs found|state file either has no outputs", re.I)


@dataclass
class TerraformProvisioner(Provisioner):
    """
    Provisions infrastructure by applying the Terraform module in the *working_dir*.
    """

    executor: Executor
    working_dir: Path
    parallelism: int = 0
    program: str = "terraform"

    def provision(self, token: CancelToken | None = None) -> None:
        self._init(token)
        try:
            self._run(["apply", "-input=false", "-auto-approve", *self._parallelism_args()], token)
        except CommandError as exc:
            raise InfraApplyError("terraform apply failed", exc.returncode, exc.output) from exc

    def reconcile(self, token: CancelToken | None = None) -> None:
        self._init(token)
        try:
            self._run(["plan", "-input=false", "-detailed-exitcode", *self._parallelism_args()], token)
        except CommandError as exc:
            if exc.returncode == PLAN_CHANGES_PENDING:
                logger.info("Terraform plan contains infrastructure changes")
                return
            raise InfraPlanError("terraform plan failed", exc.returncode, exc.output) from exc

    def fetch(self, token: CancelToken | None = None) -> dict[str, Any]:
        """
        Read the outputs of the Terraform state. If there is no state yet, no values are returned.
        """

        try:
            output = self.executor.run_silent([self.program, "output", "-json"], cwd=self.working_dir, token=token)
        except CommandError as exc:
            if _NO_ROOT_MODULE.search(exc.output):
                logger.warning("Terraform root module was not found, most likely the state was not written yet")
                return {}
            raise ProvisionerError("terraform output failed", exc.returncode, exc.output) from exc

        outputs = json.loads(output or "{}")
        return {key: value.get("value") if isinstance(value, dict) else value for key, value in outputs.items()}

    def destroy(self, token: CancelToken | None = None) -> None:
        self._init(token)
        try:
            self._run(["destroy", "-input=false", "-auto-approve", *self._parallelism_args()], token)
        except CommandError as exc:
            raise InfraDestroyError("terraform destroy failed", exc.returncode, exc.output) from exc

    def _init(self, token: CancelToken | None) -> None:
        try:
            self._run(["init", "-input=false"], token)
        except CommandError as exc:
            raise ProvisionerError("terraform init failed", exc.returncode, exc.output) from exc

    def _parallelism_args(self) -> list[str]:
        return [f"-parallelism={self.parallelism}"] if self.parallelism > 0 else []

    def _run(self, args: list[str], token: CancelToken | None) -> str:
        return self.executor.run([self.program, *args], cwd=self.working_dir, token=token)
