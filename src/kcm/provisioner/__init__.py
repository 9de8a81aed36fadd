"""
Provisioners create the infrastructure a cluster runs on and report values about it, such as the address of the API
server, that are passed on to the manifest renderer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from kcm.errors import KcmError
from kcm.tools.executor import CancelToken, Executor

PROVISIONERS = ("terraform", "minikube", "null")


@dataclass
class ProvisionerError(KcmError):
    message: str
    returncode: int = 1
    output: str = ""

    def __str__(self) -> str:
        return self.message


class InfraPlanError(ProvisionerError):
    pass


class InfraApplyError(ProvisionerError):
    pass


class InfraDestroyError(ProvisionerError):
    pass


class Provisioner(ABC):
    """
    Manages the infrastructure of a cluster.
    """

    @abstractmethod
    def provision(self, token: CancelToken | None = None) -> None:
        """
        Create or update the infrastructure.
        """

    @abstractmethod
    def reconcile(self, token: CancelToken | None = None) -> None:
        """
        Show which changes #provision() would make, without making them.
        """

    @abstractmethod
    def fetch(self, token: CancelToken | None = None) -> dict[str, Any]:
        """
        Return the output values of the infrastructure. May be called before the infrastructure exists, in which
        case it returns whatever is available.
        """

    @abstractmethod
    def destroy(self, token: CancelToken | None = None) -> None:
        """
        Tear down the infrastructure.
        """


@dataclass
class TerraformOptions:
    parallelism: int = 0
    """ Limit the number of concurrent operations of `terraform`. Zero uses the terraform default. """


@dataclass
class ProvisionerOptions:
    terraform: TerraformOptions = field(default_factory=TerraformOptions)


def create_provisioner(name: str, executor: Executor, working_dir: Path, options: ProvisionerOptions) -> Provisioner:
    """
    Create the provisioner with the given *name*.

    Raises:
        ValueError: If there is no provisioner with that name.
    """

    match name:
        case "terraform":
            from kcm.provisioner.terraform import TerraformProvisioner

            return TerraformProvisioner(executor, working_dir, options.terraform.parallelism)
        case "minikube":
            from kcm.provisioner.minikube import MinikubeProvisioner

            return MinikubeProvisioner(executor)
        case "null":
            from kcm.provisioner.null import NullProvisioner

            return NullProvisioner()
        case _:
            raise ValueError(f"unknown provisioner {name!r}, choose one of {', '.join(PROVISIONERS)}")
