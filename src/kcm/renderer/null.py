from typing import Any

from kcm.renderer import RenderedManifest, Renderer
from kcm.tools.executor import CancelToken


class NullRenderer(Renderer):
    """
    Renders no manifests. Useful to manage infrastructure only.
    """

    def render_manifests(self, values: dict[str, Any], token: CancelToken | None = None) -> list[RenderedManifest]:
        return []
