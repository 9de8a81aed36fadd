"""
Renderers turn the values of a cluster into the manifests that should be deployed to it. Every subdirectory of the
templates directory yields one manifest named after the directory.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from kcm.errors import KcmError
from kcm.tools.executor import CancelToken, Executor

RENDERERS = ("helm", "jinja", "null")
DEFAULT_TEMPLATES_DIR = "templates"


class RendererError(KcmError):
    pass


@dataclass
class RenderedManifest:
    name: str
    content: bytes


class Renderer(ABC):
    @abstractmethod
    def render_manifests(self, values: dict[str, Any], token: CancelToken | None = None) -> list[RenderedManifest]:
        """
        Render manifests from the *values*, sorted by name. Names must be stable across runs, they are used to find
        the manifest that was deployed previously.
        """


@dataclass
class RendererOptions:
    templates_dir: Path | None = None
    """ The directory containing the charts or templates. Relative to the working directory. """


def template_dirs(templates_dir: Path) -> list[Path]:
    """
    Returns the subdirectories of *templates_dir* in sorted order.

    Raises:
        RendererError: If *templates_dir* does not exist.
    """

    if not templates_dir.is_dir():
        raise RendererError(f"templates directory '{templates_dir}' does not exist")
    return sorted(path for path in templates_dir.iterdir() if path.is_dir() and not path.name.startswith("."))


def create_renderer(name: str, executor: Executor, working_dir: Path, options: RendererOptions) -> Renderer:
    """
    Create the renderer with the given *name*.

    Raises:
        ValueError: If there is no renderer with that name.
    """

    templates_dir = working_dir / (options.templates_dir or DEFAULT_TEMPLATES_DIR)

    match name:
        case "helm":
            from kcm.renderer.helm import HelmRenderer

            return HelmRenderer(executor, templates_dir)
        case "jinja":
            from kcm.renderer.jinja import JinjaRenderer

            return JinjaRenderer(templates_dir)
        case "null":
            from kcm.renderer.null import NullRenderer

            return NullRenderer()
        case _:
            raise ValueError(f"unknown renderer {name!r}, choose one of {', '.join(RENDERERS)}")
