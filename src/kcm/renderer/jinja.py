from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jinja2

from kcm.renderer import RenderedManifest, Renderer, RendererError, template_dirs
from kcm.tools.executor import CancelToken

TEMPLATE_SUFFIXES = (".yaml", ".yml")


@dataclass
class JinjaRenderer(Renderer):
    """
    Renders the YAML templates in each subdirectory of *templates_dir* with Jinja2. The values are available to the
    templates as `Values` and also as top-level names.
    """

    templates_dir: Path

    def render_manifests(self, values: dict[str, Any], token: CancelToken | None = None) -> list[RenderedManifest]:
        manifests = []

        for directory in template_dirs(self.templates_dir):
            env = jinja2.Environment(
                loader=jinja2.FileSystemLoader(directory),
                undefined=jinja2.StrictUndefined,
                keep_trailing_newline=True,
            )
            env.globals.update(values)
            env.globals["Values"] = values

            parts = []
            for file in sorted(directory.iterdir()):
                if token is not None:
                    token.raise_if_cancelled()
                if not file.is_file() or file.suffix not in TEMPLATE_SUFFIXES:
                    continue
                try:
                    rendered = env.get_template(file.name).render()
                except jinja2.TemplateError as exc:
                    raise RendererError(f"Failed to render template '{directory.name}/{file.name}': {exc}") from exc
                parts.append(f"---\n# Source: {directory.name}/{file.name}\n{rendered.strip()}\n")

            manifests.append(RenderedManifest(directory.name, "".join(parts).encode()))

        return manifests
