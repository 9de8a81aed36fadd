from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory
from textwrap import indent
from typing import Any

from loguru import logger
import yaml

from kcm.renderer import RenderedManifest, Renderer, RendererError, template_dirs
from kcm.tools.executor import CancelToken, CommandError, Executor

RELEASE_NAME = "kcm"


@dataclass
class HelmRenderer(Renderer):
    """
    Renders every Helm chart in the *templates_dir* with `helm template`.
    """

    executor: Executor
    templates_dir: Path
    namespace: str = "default"
    program: str = "helm"

    def render_manifests(self, values: dict[str, Any], token: CancelToken | None = None) -> list[RenderedManifest]:
        manifests = []

        with TemporaryDirectory() as tmp:
            values_file = Path(tmp) / "values.yaml"
            values_file.write_text(yaml.safe_dump(values))

            for chart in template_dirs(self.templates_dir):
                if not (chart / "Chart.yaml").is_file():
                    logger.debug("Skipping {}, it is not a Helm chart", chart)
                    continue

                command = [
                    self.program,
                    "template",
                    RELEASE_NAME,
                    str(chart),
                    "--namespace",
                    self.namespace,
                    "--values",
                    str(values_file),
                ]
                logger.debug("Rendering chart {}", chart.name)
                try:
                    output = self.executor.run_silent(command, token=token)
                except CommandError as exc:
                    prefix = "    "
                    raise RendererError(
                        f"Failed to render chart '{chart.name}' using Helm.\n{indent(str(exc.command), prefix)}\n"
                        f"output:\n{indent(exc.output, prefix)}"
                    ) from exc

                manifests.append(RenderedManifest(chart.name, output.encode()))

        return manifests
