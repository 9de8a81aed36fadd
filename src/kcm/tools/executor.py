"""
Running external programs such as `kubectl`, `terraform` and `helm`.

All subprocess interaction in kcm goes through an #Executor that is passed to the components that need it, which
makes it possible to replace it with a #MockExecutor in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import os
from pathlib import Path
import shlex
import signal
import subprocess
import threading
from typing import IO, Callable, Sequence

from loguru import logger

from kcm.errors import CancelledError, KcmError

REDACTED = "<sensitive>"


def redact(text: str, sensitive: Sequence[str]) -> str:
    """
    Replace every occurrence of a sensitive string in *text* with a placeholder.
    """

    for value in sensitive:
        if value:
            text = text.replace(value, REDACTED)
    return text


def format_command(command: Sequence[str], sensitive: Sequence[str] = ()) -> str:
    """
    Format a command for display, masking the *sensitive* values.
    """

    return redact(shlex.join(command), sensitive)


@dataclass
class CommandError(KcmError):
    """
    Raised when a command exits with a non-zero status code.
    """

    command: str
    """ The command line that failed, with sensitive values masked. """

    returncode: int
    output: str = ""

    def __str__(self) -> str:
        message = f"command `{self.command}` failed with exit code {self.returncode}"
        output = self.output.strip("\n")
        if output:
            message += f": {output}"
        return message


class CancelToken:
    """
    A handle to cooperatively cancel running operations. When cancelled, the process that is currently executed by
    the #SubprocessExecutor receives *signum* (interrupt by default).
    """

    def __init__(self, signum: signal.Signals = signal.SIGINT) -> None:
        self.signal = signum
        self._event = threading.Event()

    def __repr__(self) -> str:
        return f"CancelToken(signal={self.signal.name}, cancelled={self.cancelled})"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError()

    def sleep(self, seconds: float) -> None:
        """
        Sleep for the given number of seconds, returning early with a #CancelledError if the token is cancelled.
        """

        if self._event.wait(seconds):
            raise CancelledError()


class Executor(ABC):
    """
    Runs commands and returns their output.
    """

    @abstractmethod
    def run(
        self,
        command: Sequence[str],
        *,
        input: bytes | None = None,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        token: CancelToken | None = None,
        sensitive: Sequence[str] = (),
    ) -> str:
        """
        Run the *command* and return its combined stdout and stderr. The output is forwarded to the log while the
        command is running.

        Raises:
            CommandError: If the command exits with a non-zero status code.
            CancelledError: If the *token* was cancelled while the command was running.
        """

    @abstractmethod
    def run_silent(
        self,
        command: Sequence[str],
        *,
        input: bytes | None = None,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        token: CancelToken | None = None,
        sensitive: Sequence[str] = (),
    ) -> str:
        """
        Like #run(), but the output is only captured and never logged.
        """


@dataclass
class SubprocessExecutor(Executor):
    """
    Executes commands as local subprocesses.
    """

    poll_interval: float = 0.1
    """ How often (in seconds) the cancellation token is checked while a process is running. """

    extra_env: dict[str, str] = field(default_factory=dict)
    """ Environment variables that are passed to every command on top of the current environment. """

    def run(
        self,
        command: Sequence[str],
        *,
        input: bytes | None = None,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        token: CancelToken | None = None,
        sensitive: Sequence[str] = (),
    ) -> str:
        prefix = f"[{Path(command[0]).name}] "
        return self._execute(
            command,
            input=input,
            cwd=cwd,
            env=env,
            token=token,
            sensitive=sensitive,
            on_stdout=lambda line: logger.info("{}{}", prefix, redact(line, sensitive)),
            on_stderr=lambda line: logger.error("{}{}", prefix, redact(line, sensitive)),
        )

    def run_silent(
        self,
        command: Sequence[str],
        *,
        input: bytes | None = None,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        token: CancelToken | None = None,
        sensitive: Sequence[str] = (),
    ) -> str:
        return self._execute(command, input=input, cwd=cwd, env=env, token=token, sensitive=sensitive)

    def _execute(
        self,
        command: Sequence[str],
        *,
        input: bytes | None,
        cwd: Path | None,
        env: dict[str, str] | None,
        token: CancelToken | None,
        sensitive: Sequence[str],
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
    ) -> str:
        display = format_command(command, sensitive)
        if token is not None:
            token.raise_if_cancelled()

        logger.debug("$ {}", display)
        process = subprocess.Popen(
            list(command),
            stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env={**os.environ, **self.extra_env, **(env or {})},
        )

        lines: list[str] = []
        lock = threading.Lock()

        def _collect(stream: IO[bytes], callback: Callable[[str], None] | None) -> None:
            for raw in iter(stream.readline, b""):
                line = raw.decode(errors="replace")
                with lock:
                    lines.append(line)
                if callback is not None:
                    callback(line.rstrip("\n"))
            stream.close()

        def _feed(stream: IO[bytes], data: bytes) -> None:
            try:
                stream.write(data)
            except BrokenPipeError:
                pass
            finally:
                stream.close()

        assert process.stdout is not None and process.stderr is not None
        threads = [
            threading.Thread(target=_collect, args=(process.stdout, on_stdout), daemon=True),
            threading.Thread(target=_collect, args=(process.stderr, on_stderr), daemon=True),
        ]
        if input is not None:
            assert process.stdin is not None
            threads.append(threading.Thread(target=_feed, args=(process.stdin, input), daemon=True))
        for thread in threads:
            thread.start()

        cancelled = False
        while True:
            try:
                process.wait(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if token is not None and token.cancelled and not cancelled:
                    logger.info("Terminating running process {}", display)
                    process.send_signal(token.signal)
                    cancelled = True

        for thread in threads:
            thread.join()

        output = "".join(lines)
        if cancelled:
            raise CancelledError()
        if process.returncode != 0:
            raise CommandError(display, process.returncode, redact(output, sensitive))
        return output
