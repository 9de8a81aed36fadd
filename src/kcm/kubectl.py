from dataclasses import dataclass
import re
import time
from typing import Callable

from loguru import logger
import tenacity as tc

from kcm.credentials import Credentials
from kcm.errors import KcmError
from kcm.resource import DEFAULT_NAMESPACE
from kcm.resource.selector import ResourceSelector
from kcm.tools.duration import format_duration
from kcm.tools.executor import CancelToken, CommandError, Executor

MAX_ATTEMPTS = 10
""" How often applying or deleting a manifest is attempted before giving up. """

CLUSTER_PROBE_ATTEMPTS = 30
CLUSTER_PROBE_INTERVAL = 2.0

PERMANENT_ERROR_PATTERN = re.compile(r"(ValidationError|no matches for kind|the server doesn't have a resource type)")
""" Errors that won't go away by retrying, so there is no point in doing so. """


@dataclass
class KubectlError(KcmError):
    """
    Raised when a `kubectl` command failed, after all retries were used up.
    """

    operation: str
    returncode: int
    output: str = ""
    attempts: int = 1

    def __str__(self) -> str:
        message = f"kubectl {self.operation} failed with exit code {self.returncode}"
        if self.attempts > 1:
            message += f" after {self.attempts} attempts"
        output = self.output.strip()
        if output:
            message += f": {output}"
        return message


@dataclass
class ClusterUnreachableError(KcmError):
    attempts: int
    output: str

    def __str__(self) -> str:
        return f"cluster did not become reachable after {self.attempts} attempts: {self.output.strip()}"


def is_permanent_error(exc: BaseException) -> bool:
    return isinstance(exc, CommandError) and PERMANENT_ERROR_PATTERN.search(exc.output) is not None


def _is_transient_error(exc: BaseException) -> bool:
    return isinstance(exc, CommandError) and not is_permanent_error(exc)


def _on_backoff(retry_state: tc.RetryCallState) -> None:
    """Log a warning on each retry."""

    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning("Attempt {} failed, retrying in {:.1f}s: {}", retry_state.attempt_number, delay, exc)


class Kubectl:
    """
    Applies and deletes resources through `kubectl`. All mutating operations are skipped in dry-run mode.
    """

    def __init__(
        self,
        credentials: Credentials,
        executor: Executor,
        dry_run: bool = False,
        sleep: Callable[[float], None] | None = None,
        program: str = "kubectl",
    ) -> None:
        self.credentials = credentials
        self.executor = executor
        self.dry_run = dry_run
        self.program = program
        self._sleep = sleep

    def apply_manifest(self, manifest: bytes, token: CancelToken | None = None) -> None:
        """
        Apply a multi-document manifest, retrying with exponential backoff on transient errors.
        """

        if self.dry_run:
            logger.info("Would apply manifest (dry run)")
            return

        self._retry("apply", ["apply", "-f", "-"], manifest, token)

    def delete_manifest(self, manifest: bytes, token: CancelToken | None = None) -> None:
        """
        Delete the resources in a multi-document manifest. Resources that do not exist are ignored.
        """

        if self.dry_run:
            logger.info("Would delete manifest (dry run)")
            return

        self._retry("delete", ["delete", "-f", "-", "--ignore-not-found"], manifest, token)

    def delete_resource(self, selector: ResourceSelector, token: CancelToken | None = None) -> None:
        """
        Delete resources by name or label selector. This is not retried, failed deletions are left to the caller.

        Raises:
            InvalidSelectorError: If the selector has neither a name nor labels.
            KubectlError: If `kubectl` fails.
        """

        selector.validate()

        args = ["delete", selector.kind.lower()]
        if selector.name:
            args.append(selector.name)
        else:
            args.append(f"--selector={selector.label_selector()}")
        args += ["--namespace", selector.namespace or DEFAULT_NAMESPACE, "--ignore-not-found"]

        if self.dry_run:
            logger.info("Would delete {} (dry run)", selector)
            return

        try:
            self._run(args, token=token)
        except CommandError as exc:
            raise KubectlError("delete", exc.returncode, exc.output) from exc

    def wait(
        self,
        kind: str,
        name: str,
        namespace: str,
        for_condition: str,
        timeout: float | None = None,
        token: CancelToken | None = None,
    ) -> None:
        """
        Wait until the named resource meets *for_condition*, e.g. `condition=complete`. The *timeout* in seconds is
        enforced by `kubectl`.
        """

        args = ["wait", "--for", for_condition, "--namespace", namespace or DEFAULT_NAMESPACE, f"{kind}/{name}"]
        if timeout:
            args += ["--timeout", format_duration(timeout)]

        if self.dry_run:
            logger.info("Would wait for {} of {}/{} (dry run)", for_condition, kind, name)
            return

        try:
            self._run(args, token=token)
        except CommandError as exc:
            raise KubectlError("wait", exc.returncode, exc.output) from exc

    def cluster_info(self, token: CancelToken | None = None) -> str:
        return self._run(["cluster-info"], token=token, silent=True)

    def wait_for_cluster(
        self,
        token: CancelToken | None = None,
        attempts: int = CLUSTER_PROBE_ATTEMPTS,
        interval: float = CLUSTER_PROBE_INTERVAL,
    ) -> None:
        """
        Probe the cluster with `kubectl cluster-info` until it responds.

        Raises:
            ClusterUnreachableError: If the cluster did not respond within the given number of attempts.
        """

        logger.info("Waiting for cluster to become available")
        retrying = tc.Retrying(
            stop=tc.stop_after_attempt(attempts),
            wait=tc.wait_fixed(interval),
            retry=tc.retry_if_exception_type(CommandError),
            before_sleep=lambda state: logger.debug("Cluster not reachable yet (attempt {})", state.attempt_number),
            reraise=True,
            sleep=self._sleeper(token),
        )
        try:
            retrying(self.cluster_info, token)
        except CommandError as exc:
            raise ClusterUnreachableError(attempts, exc.output) from exc

    def credential_args(self) -> list[str]:
        """
        Arguments that tell `kubectl` how to talk to the cluster. A kubeconfig takes precedence over a server and
        token.
        """

        args = []
        if self.credentials.context:
            args += ["--context", self.credentials.context]
        if self.credentials.kubeconfig:
            args += ["--kubeconfig", self.credentials.kubeconfig]
        else:
            if self.credentials.server:
                args += ["--server", self.credentials.server]
            if self.credentials.token:
                args += ["--token", self.credentials.token]
        return args

    def _sleeper(self, token: CancelToken | None) -> Callable[[float], None]:
        if self._sleep is not None:
            return self._sleep
        return token.sleep if token is not None else time.sleep

    def _retry(self, operation: str, args: list[str], manifest: bytes, token: CancelToken | None) -> None:
        retrying = tc.Retrying(
            stop=tc.stop_after_attempt(MAX_ATTEMPTS),
            wait=tc.wait_exponential(multiplier=0.5, min=0.5, max=30),
            retry=tc.retry_if_exception(_is_transient_error),
            before_sleep=_on_backoff,
            reraise=True,
            sleep=self._sleeper(token),
        )
        try:
            retrying(self._run, args, input=manifest, token=token)
        except CommandError as exc:
            attempts = retrying.statistics.get("attempt_number", 1)
            raise KubectlError(operation, exc.returncode, exc.output, attempts) from exc

    def _run(
        self,
        args: list[str],
        input: bytes | None = None,
        token: CancelToken | None = None,
        silent: bool = False,
    ) -> str:
        command = [self.program, *args, *self.credential_args()]
        run = self.executor.run_silent if silent else self.executor.run
        return run(command, input=input, token=token, sensitive=[self.credentials.token or ""])
