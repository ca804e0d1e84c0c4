"""
Shell command runner — execute external CLI tools.

kubectl, crane and cosign are all driven through ``run_command``.
It returns the completed process for the caller to interpret, and
raises ``CommandError`` only when the tool could not be run at all
(missing binary, timeout).
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Sequence

from kubeverify.adapters.base import CollaboratorError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


class CommandError(CollaboratorError):
    """An external command could not be executed."""


def run_command(
    args: Sequence[str],
    *,
    input_data: bytes | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess[bytes]:
    """Run a command and capture its output as bytes.

    Args:
        args: Command and arguments (never run through a shell).
        input_data: Optional bytes fed to stdin.
        timeout: Timeout in seconds.

    Raises:
        CommandError: If the binary is missing or the command times out.
    """
    logger.debug("Executing: %s", " ".join(args))
    start = time.monotonic()
    try:
        result = subprocess.run(
            list(args),
            input=input_data,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise CommandError(f"{args[0]} not found: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(f"{args[0]} timed out after {timeout}s") from e

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.debug("%s exited with %d in %dms", args[0], result.returncode, elapsed_ms)
    return result


def stderr_text(result: subprocess.CompletedProcess[bytes]) -> str:
    """Decoded, stripped stderr (or a return-code fallback)."""
    text = (result.stderr or b"").decode("utf-8", errors="replace").strip()
    return text or f"exited with code {result.returncode}"
