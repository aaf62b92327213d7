"""Tests for structured chain errors."""
from __future__ import annotations

import pytest

from chainctl.errors import ChainError, ErrorKind
from chainctl.exit_codes import ExitCode


@pytest.mark.parametrize(
    ("kind", "code"),
    [
        (ErrorKind.NOT_FOUND, ExitCode.VALIDATION),
        (ErrorKind.VALIDATION, ExitCode.VALIDATION),
        (ErrorKind.DEPENDENCY, ExitCode.ENVIRONMENT),
        (ErrorKind.TIMEOUT, ExitCode.ENVIRONMENT),
        (ErrorKind.RUNTIME, ExitCode.PROVIDER),
        (ErrorKind.SETUP, ExitCode.PROVIDER),
        (ErrorKind.EXEC, ExitCode.PROVIDER),
    ],
)
def test_exit_code_mapping(kind: ErrorKind, code: ExitCode) -> None:
    """Each error class maps onto a CLI exit code."""
    assert ChainError(kind, "boom").exit_code is code


def test_render_includes_cause_and_hint() -> None:
    """Rendering lists the cause and hint on separate lines."""
    error = ChainError(
        ErrorKind.RUNTIME,
        "could not start chain 'mychain'",
        cause=RuntimeError("docker run failed"),
        hint="is docker running?",
    )

    assert error.render() == (
        "could not start chain 'mychain'\n"
        "cause: docker run failed\n"
        "hint: is docker running?"
    )
    assert str(error) == "could not start chain 'mychain': docker run failed"


def test_cause_already_in_message_is_not_repeated() -> None:
    """A cause embedded in the message is shown once."""
    error = ChainError(ErrorKind.SETUP, "failed: disk full", cause=OSError("disk full"))

    assert str(error) == "failed: disk full"
    assert error.render() == "failed: disk full"


def test_combine_keeps_both_failures() -> None:
    """A failed rollback is reported together with the original failure."""
    original = ChainError(ErrorKind.DEPENDENCY, "service 'keys' failed")
    combined = ChainError.combine(original, RuntimeError("volume busy"))

    assert combined.kind is ErrorKind.SETUP
    assert "service 'keys' failed" in combined.message
    assert "volume busy" in combined.message
    assert combined.cause is original
    assert "docker rm -vf" in combined.hint
