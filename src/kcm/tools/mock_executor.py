from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
import shlex
from typing import Sequence

from kcm.tools.executor import CancelToken, CommandError, Executor, format_command


@dataclass
class Expectation:
    """
    A canned response for commands matching a glob *pattern*.
    """

    pattern: str
    output: str = ""
    returncode: int = 0
    times: int | None = 1
    """ How often the expectation can be consumed. `None` means indefinitely. """

    def matches(self, command: str) -> bool:
        return (self.times is None or self.times > 0) and fnmatchcase(command, self.pattern)


@dataclass
class Call:
    command: str
    input: bytes | None = None


@dataclass
class MockExecutor(Executor):
    """
    An #Executor that records the commands it is asked to run instead of running them. Commands that match an
    #Expectation produce its output and exit code, all other commands succeed with empty output.
    """

    expectations: list[Expectation] = field(default_factory=list)
    calls: list[Call] = field(default_factory=list)

    def expect(self, pattern: str, output: str = "", returncode: int = 0, times: int | None = 1) -> "MockExecutor":
        self.expectations.append(Expectation(pattern, output, returncode, times))
        return self

    @property
    def commands(self) -> list[str]:
        return [call.command for call in self.calls]

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
        if token is not None:
            token.raise_if_cancelled()

        line = shlex.join(command)
        self.calls.append(Call(line, input))

        for expectation in self.expectations:
            if expectation.matches(line):
                if expectation.times is not None:
                    expectation.times -= 1
                if expectation.returncode != 0:
                    raise CommandError(format_command(command, sensitive), expectation.returncode, expectation.output)
                return expectation.output

        return ""

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
        return self.run(command, input=input, cwd=cwd, env=env, token=token, sensitive=sensitive)
