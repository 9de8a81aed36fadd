from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from loguru import logger

from kcm.errors import KcmError
from kcm.tools.executor import REDACTED, CancelToken

if TYPE_CHECKING:
    from kcm.provisioner import Provisioner


class EmptyCredentialsError(KcmError):
    def __str__(self) -> str:
        return "no cluster credentials available, either a kubeconfig or a server and token are required"


@dataclass
class Credentials:
    """
    The information `kubectl` needs to talk to a cluster.
    """

    server: str = ""
    token: str = ""
    kubeconfig: str = ""
    context: str = ""

    def is_empty(self) -> bool:
        return not (self.server or self.token or self.kubeconfig or self.context)

    def redacted(self) -> "Credentials":
        """
        A copy that is safe to log.
        """

        return replace(self, token=REDACTED if self.token else "")

    @staticmethod
    def from_values(values: dict[str, Any]) -> "Credentials":
        """
        Read credentials from the `server`, `token`, `kubeconfig` and `context` keys of a values mapping.
        """

        def _get(key: str) -> str:
            value = values.get(key)
            return "" if value is None else str(value)

        return Credentials(
            server=_get("server"),
            token=_get("token"),
            kubeconfig=_get("kubeconfig"),
            context=_get("context"),
        )


class CredentialSource(ABC):
    """
    Supplies the credentials for the cluster that is managed.
    """

    @abstractmethod
    def get_credentials(self, token: CancelToken | None = None) -> Credentials: ...


@dataclass
class StaticCredentialSource(CredentialSource):
    """
    Credentials that were configured explicitly, e.g. on the command line.
    """

    credentials: Credentials

    def get_credentials(self, token: CancelToken | None = None) -> Credentials:
        return self.credentials


@dataclass
class ProvisionerCredentialSource(CredentialSource):
    """
    Credentials taken from the outputs of the provisioner that created the cluster.
    """

    provisioner: "Provisioner"

    def get_credentials(self, token: CancelToken | None = None) -> Credentials:
        logger.debug("Fetching cluster credentials from provisioner outputs")
        return Credentials.from_values(self.provisioner.fetch(token))


def credential_source(credentials: Credentials, provisioner: "Provisioner") -> CredentialSource:
    """
    Use the *credentials* if any were given, otherwise source them from the *provisioner*.
    """

    if credentials.is_empty():
        return ProvisionerCredentialSource(provisioner)
    return StaticCredentialSource(credentials)
