"""
The config file holds the options of a cluster so they don't have to be passed on the command line every time:

```yaml
provisioner: terraform
renderer: helm
workingDir: ./cluster
credentials:
  kubeconfig: ~/.kube/config
managerOptions:
  includeUnchanged: true
provisionerOptions:
  terraform:
    parallelism: 4
rendererOptions:
  templatesDir: charts
```

Every option that is set in the config file takes precedence over the corresponding command line flag.
"""

from dataclasses import dataclass, field, fields, replace
import json
from pathlib import Path
from typing import Annotated, Any, Literal

from databind.core import Alias, SerializeDefaults
from loguru import logger
import yaml

from kcm.cluster import ManagerOptions
from kcm.credentials import Credentials
from kcm.provisioner import ProvisionerOptions
from kcm.renderer import RendererOptions
from kcm.tools.fs import find_config_file


@dataclass
class CredentialsConfig:
    server: str | None = None
    token: str | None = None
    kubeconfig: str | None = None
    context: str | None = None


@dataclass
class ManagerConfig:
    dry_run: Annotated[bool | None, Alias("dryRun")] = None
    values: Path | None = None
    manifests_dir: Annotated[Path | None, Alias("manifestsDir")] = None
    deletions: Path | None = None
    only_manifest: Annotated[bool | None, Alias("onlyManifest")] = None
    skip_manifests: Annotated[bool | None, Alias("skipManifests")] = None
    include_unchanged: Annotated[bool | None, Alias("includeUnchanged")] = None
    no_hooks: Annotated[bool | None, Alias("noHooks")] = None
    no_save: Annotated[bool | None, Alias("noSave")] = None
    full_diff: Annotated[bool | None, Alias("fullDiff")] = None


@dataclass
class TerraformConfig:
    parallelism: int | None = None


@dataclass
class ProvisionerConfig:
    terraform: TerraformConfig = field(default_factory=TerraformConfig)


@dataclass
class RendererConfig:
    templates_dir: Annotated[Path | None, Alias("templatesDir")] = None


@dataclass
class Config:
    """
    The contents of a `kcm.yaml` file. Options that are not set are `None`.
    """

    FILENAME = "kcm.yaml"

    provisioner: str | None = None
    renderer: str | None = None
    working_dir: Annotated[Path | None, Alias("workingDir")] = None
    """ Relative to the directory that contains the config file. """

    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    manager_options: Annotated[ManagerConfig, Alias("managerOptions")] = field(default_factory=ManagerConfig)
    provisioner_options: Annotated[ProvisionerConfig, Alias("provisionerOptions")] = field(
        default_factory=ProvisionerConfig
    )
    renderer_options: Annotated[RendererConfig, Alias("rendererOptions")] = field(default_factory=RendererConfig)

    @staticmethod
    def load(file: Path | None = None, /) -> tuple[Path | None, "Config"]:
        """
        Load the given config file, or look for a `kcm.yaml` in the current directory and its parents. Returns an
        empty config if there is no config file.
        """

        from databind.json import load as deser

        if file is None:
            file = find_config_file(Config.FILENAME, required=False)
        if file is None:
            logger.debug("No config file found")
            return None, Config()

        logger.debug("Loading configuration from '{}'", file)
        config = deser(yaml.safe_load(file.read_text()) or {}, Config, filename=str(file))

        if config.working_dir is not None and not config.working_dir.is_absolute():
            config.working_dir = file.parent / config.working_dir

        return file, config

    def dump(self, output: Literal["yaml", "json"] = "yaml") -> str:
        """
        Serialize the options that are set.
        """

        from databind.json import dump as ser

        data = _drop_none(ser(self, Config, settings=[SerializeDefaults(False)]))
        if output == "json":
            return json.dumps(data) + "\n"
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)

    def merge(self, settings: "Settings") -> "Settings":
        """
        Override the *settings*, usually taken from the command line, with the options set in this config.
        """

        terraform = _override(settings.provisioner_options.terraform, self.provisioner_options.terraform)
        return Settings(
            provisioner=self.provisioner or settings.provisioner,
            renderer=self.renderer or settings.renderer,
            working_dir=self.working_dir or settings.working_dir,
            credentials=_override(settings.credentials, self.credentials),
            manager_options=_override(settings.manager_options, self.manager_options),
            provisioner_options=replace(settings.provisioner_options, terraform=terraform),
            renderer_options=_override(settings.renderer_options, self.renderer_options),
        )


@dataclass
class Settings:
    """
    The fully resolved options of a run.
    """

    provisioner: str = "terraform"
    renderer: str = "helm"
    working_dir: Path = Path(".")
    credentials: Credentials = field(default_factory=Credentials)
    manager_options: ManagerOptions = field(default_factory=ManagerOptions)
    provisioner_options: ProvisionerOptions = field(default_factory=ProvisionerOptions)
    renderer_options: RendererOptions = field(default_factory=RendererOptions)

    def resolve_paths(self) -> "Settings":
        """
        Returns settings where the file and directory paths of the manager options are relative to the working
        directory.
        """

        def _resolve(path: Path) -> Path:
            return path if path.is_absolute() else self.working_dir / path

        options = replace(
            self.manager_options,
            values=_resolve(self.manager_options.values),
            manifests_dir=_resolve(self.manager_options.manifests_dir),
            deletions=_resolve(self.manager_options.deletions),
        )
        return replace(self, manager_options=options)


def _override(target: Any, source: Any) -> Any:
    """
    Replace the fields of the dataclass *target* with the fields of the same name in *source* that are not `None`.
    """

    changes = {f.name: getattr(source, f.name) for f in fields(source) if getattr(source, f.name) is not None}
    return replace(target, **changes)


def _drop_none(value: Any) -> Any:
    """
    Remove keys without a value, and mappings that end up empty, from serialized data.
    """

    if not isinstance(value, dict):
        return value
    result = {}
    for key, item in value.items():
        item = _drop_none(item)
        if item is not None and item != {}:
            result[key] = item
    return result
