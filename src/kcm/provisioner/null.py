from typing import Any

from kcm.provisioner import Provisioner
from kcm.tools.executor import CancelToken


class NullProvisioner(Provisioner):
    """
    A provisioner for clusters whose infrastructure is managed elsewhere.
    """

    def provision(self, token: CancelToken | None = None) -> None:
        pass

    def reconcile(self, token: CancelToken | None = None) -> None:
        pass

    def fetch(self, token: CancelToken | None = None) -> dict[str, Any]:
        return {}

    def destroy(self, token: CancelToken | None = None) -> None:
        pass
