"""POSIX shell quoting for commands sent to a sandbox.

Every value interpolated into a sandbox command line goes through
``shell_quote``. Commands are assembled from argument vectors with
``shell_join`` and wrapped for execution with ``wrap_bash``.
"""

from typing import Iterable, Mapping


def shell_quote(value: str) -> str:
    """Wrap a value in single quotes, escaping embedded single quotes.

    >>> shell_quote("it's")
    "'it'\\\\''s'"
    """
    return "'" + value.replace("'", "'\\''") + "'"


def shell_join(argv: Iterable[str]) -> str:
    """Quote every argument and join them into one command line."""
    return " ".join(shell_quote(arg) for arg in argv)


def env_assignments(env: Mapping[str, str]) -> str:
    """Render ``NAME='value'`` prefixes for a command line."""
    return " ".join(f"{name}={shell_quote(value)}" for name, value in env.items())


def wrap_bash(command: str) -> str:
    """Wrap a command so it runs in a bash login shell."""
    return f"bash -lc {shell_quote(command)}"
