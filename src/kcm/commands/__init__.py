"""
kcm provisions the infrastructure of a Kubernetes cluster and rolls out the manifests rendered for it, running hooks
and tracking the resources that need to be deleted along the way.
"""

from contextlib import contextmanager
from dataclasses import replace
from enum import Enum
from pathlib import Path
import signal
import sys
from types import FrameType
from typing import Callable, Iterator, Optional

from filelock import FileLock, Timeout
from loguru import logger
from typer import BadParameter, Context, Option

from kcm.cluster import ClusterManager, ManagerOptions
from kcm.config import Config, Settings
from kcm.credentials import Credentials, credential_source
from kcm.errors import CancelledError, KcmError
from kcm.provisioner import PROVISIONERS, ProvisionerOptions, TerraformOptions, create_provisioner
from kcm.renderer import RENDERERS, RendererOptions, create_renderer
from kcm.tools.executor import CancelToken, SubprocessExecutor
from kcm.tools.typer import new_typer

LOCK_FILE = ".kcm.lock"
LOCK_TIMEOUT = 5.0

app = new_typer(help=__doc__)


class LogLevel(str, Enum):
    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@app.callback()
def _callback(
    ctx: Context,
    log_level: LogLevel = Option(LogLevel.INFO, "--log-level", "-l", help="The log level to use."),
    dry_run: bool = Option(False, "--dry-run", help="Only show what would be changed, without changing anything."),
    working_dir: Path = Option(
        Path("."), "--working-dir", "-w", help="The directory that relative paths are resolved against."
    ),
    config_file: Optional[Path] = Option(
        None,
        "--config",
        "-c",
        help=f"Path to the config file. If not set, `{Config.FILENAME}` is searched in the current directory and its "
        "parents.",
    ),
    provisioner: str = Option("terraform", help=f"The infrastructure provisioner, one of {', '.join(PROVISIONERS)}."),
    renderer: str = Option("helm", help=f"The manifest renderer, one of {', '.join(RENDERERS)}."),
    values: Path = Option(Path("values.yaml"), help="The values file that manifests are rendered from."),
    deletions: Path = Option(Path("deletions.yaml"), help="The file listing resources that should be deleted."),
    manifests_dir: Path = Option(Path("manifests"), help="The directory the deployed manifests are stored in."),
    templates_dir: Optional[Path] = Option(None, help="The directory containing the charts or templates."),
    only_manifest: bool = Option(
        False, "--only-manifest", help="Only roll out manifests, skip infrastructure changes."
    ),
    include_unchanged: bool = Option(
        False, "--include-unchanged", help="Also apply manifests and resources that did not change."
    ),
    no_hooks: bool = Option(False, "--no-hooks", help="Do not run hooks."),
    no_save: bool = Option(False, "--no-save", help="Do not save values and manifests."),
    full_diff: bool = Option(False, "--full-diff", help="Log the full diff of every manifest before it is rolled out."),
    terraform_parallelism: int = Option(0, help="Limit the number of concurrent terraform operations."),
    cluster_kubeconfig: str = Option("", help="The kubeconfig used to access the cluster."),
    cluster_context: str = Option("", help="The kubeconfig context used to access the cluster."),
    cluster_server: str = Option("", help="The address of the API server of the cluster."),
    cluster_token: str = Option("", envvar="KCM_CLUSTER_TOKEN", help="The token used to access the cluster."),
) -> None:
    logger.remove()
    logger.add(sys.stderr, level=log_level.name)

    flags = Settings(
        provisioner=provisioner,
        renderer=renderer,
        working_dir=working_dir,
        credentials=Credentials(
            server=cluster_server,
            token=cluster_token,
            kubeconfig=cluster_kubeconfig,
            context=cluster_context,
        ),
        manager_options=ManagerOptions(
            dry_run=dry_run,
            values=values,
            manifests_dir=manifests_dir,
            deletions=deletions,
            only_manifest=only_manifest,
            include_unchanged=include_unchanged,
            no_hooks=no_hooks,
            no_save=no_save,
            full_diff=full_diff,
        ),
        provisioner_options=ProvisionerOptions(TerraformOptions(parallelism=terraform_parallelism)),
        renderer_options=RendererOptions(templates_dir=templates_dir),
    )

    _, config = Config.load(config_file)
    settings = config.merge(flags).resolve_paths()

    if settings.provisioner not in PROVISIONERS:
        raise BadParameter(f"must be one of {', '.join(PROVISIONERS)}", param_hint="--provisioner")
    if settings.renderer not in RENDERERS:
        raise BadParameter(f"must be one of {', '.join(RENDERERS)}", param_hint="--renderer")

    ctx.obj = settings


Operation = Callable[[ClusterManager, ManagerOptions, CancelToken], None]


def run_manager(ctx: Context, operation: Operation, skip_manifests: bool = False) -> None:
    """
    Set up the cluster manager from the settings of the command line and run *operation* with it. Runs in the same
    working directory are serialized with a lock file.
    """

    settings: Settings = ctx.obj
    options = settings.manager_options
    if skip_manifests:
        options = replace(options, skip_manifests=True)

    executor = SubprocessExecutor()
    provisioner = create_provisioner(settings.provisioner, executor, settings.working_dir, settings.provisioner_options)
    renderer = create_renderer(settings.renderer, executor, settings.working_dir, settings.renderer_options)
    manager = ClusterManager(credential_source(settings.credentials, provisioner), provisioner, renderer, executor)

    lock = FileLock(settings.working_dir / LOCK_FILE)
    try:
        lock.acquire(timeout=LOCK_TIMEOUT)
    except Timeout:
        logger.error("Another kcm run holds the lock on {}", lock.lock_file)
        sys.exit(1)

    token = CancelToken()
    try:
        with _cancel_on_signal(token):
            operation(manager, options, token)
    finally:
        lock.release()


@contextmanager
def _cancel_on_signal(token: CancelToken) -> Iterator[None]:
    """
    Cancel the *token* when the process receives an interrupt or terminate signal. The signal is passed on to the
    command that is currently running.
    """

    def _handler(signum: int, frame: FrameType | None) -> None:
        token.signal = signal.Signals(signum)
        logger.warning("Received {}, cancelling", token.signal.name)
        token.cancel()

    previous = {signum: signal.signal(signum, _handler) for signum in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def exit_code(exc: BaseException) -> int:
    """
    The exit code of the subprocess that caused *exc*, found by following the chain of causes. Defaults to 1.
    """

    current: BaseException | None = exc
    while current is not None:
        returncode = getattr(current, "returncode", None)
        if isinstance(returncode, int) and returncode > 0:
            return returncode
        current = current.__cause__
    return 1


def main() -> None:
    try:
        app()
    except CancelledError as exc:
        logger.error("{}", exc)
        sys.exit(130)
    except KcmError as exc:
        logger.error("{}", exc)
        sys.exit(exit_code(exc))


from . import config  # noqa: F401,E402
from . import destroy  # noqa: F401,E402
from . import manifests  # noqa: E402
from . import provision  # noqa: F401,E402
from . import version  # noqa: F401,E402

app.add_typer(manifests.app)
