import sys
import threading

import pytest

from kcm.errors import CancelledError
from kcm.tools.executor import CancelToken, CommandError, SubprocessExecutor, format_command, redact
from kcm.tools.mock_executor import MockExecutor


def test__redact() -> None:
    assert redact("kubectl --token s3cr3t apply", ["s3cr3t"]) == "kubectl --token <sensitive> apply"
    assert redact("kubectl apply", ["", "s3cr3t"]) == "kubectl apply"


def test__format_command() -> None:
    assert format_command(["echo", "hello world", "tok"], ["tok"]) == "echo 'hello world' <sensitive>"


def test__SubprocessExecutor__run_returns_combined_output() -> None:
    output = SubprocessExecutor().run(
        [sys.executable, "-c", "import sys; print('out'); sys.stdout.flush(); print('err', file=sys.stderr)"]
    )
    assert sorted(output.splitlines()) == ["err", "out"]


def test__SubprocessExecutor__run_passes_input() -> None:
    output = SubprocessExecutor().run_silent(
        [sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"],
        input=b"kind: Pod\n",
    )
    assert output == "KIND: POD\n"


def test__SubprocessExecutor__run_raises_CommandError_with_redacted_output() -> None:
    with pytest.raises(CommandError) as excinfo:
        SubprocessExecutor().run_silent(
            [sys.executable, "-c", "import sys; print('bad token s3cr3t'); sys.exit(3)", "s3cr3t"],
            sensitive=["s3cr3t"],
        )

    assert excinfo.value.returncode == 3
    assert "s3cr3t" not in excinfo.value.command
    assert excinfo.value.output == "bad token <sensitive>\n"


def test__SubprocessExecutor__run_cancels_running_process() -> None:
    token = CancelToken()
    timer = threading.Timer(0.2, token.cancel)
    timer.start()
    try:
        with pytest.raises(CancelledError):
            SubprocessExecutor().run_silent([sys.executable, "-c", "import time; time.sleep(30)"], token=token)
    finally:
        timer.cancel()


def test__SubprocessExecutor__run_refuses_to_start_when_cancelled() -> None:
    token = CancelToken()
    token.cancel()
    with pytest.raises(CancelledError):
        SubprocessExecutor().run([sys.executable, "-c", "pass"], token=token)


def test__CancelToken__sleep() -> None:
    token = CancelToken()
    token.sleep(0)
    token.cancel()
    with pytest.raises(CancelledError):
        token.sleep(10)


def test__MockExecutor__expectations() -> None:
    executor = MockExecutor()
    executor.expect("kubectl apply *", output="boom", returncode=1)
    executor.expect("kubectl version*", output="v1.30", times=None)

    with pytest.raises(CommandError) as excinfo:
        executor.run(["kubectl", "apply", "-f", "-"], input=b"kind: Pod")
    assert excinfo.value.output == "boom"

    # The failing expectation was consumed.
    assert executor.run(["kubectl", "apply", "-f", "-"]) == ""
    assert executor.run(["kubectl", "version"]) == "v1.30"
    assert executor.run(["kubectl", "version"]) == "v1.30"
    assert executor.commands == [
        "kubectl apply -f -",
        "kubectl apply -f -",
        "kubectl version",
        "kubectl version",
    ]
    assert executor.calls[0].input == b"kind: Pod"
