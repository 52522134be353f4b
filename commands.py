# commands.py
import subprocess
import sys
from typing import List

from errors import CommandExecutionFailure
from logging_setup import get_logger

log = get_logger("commands")

IS_WINDOWS = sys.platform.startswith("win")
IS_MACOS = sys.platform == "darwin"


def run_command(args: List[str], timeout: float, check: bool = True) -> str:
    """
    Run an external command and return its decoded stdout.
    Raises CommandExecutionFailure if it cannot start, times out,
    or (with check=True) exits non-zero.
    """
    name = args[0] if args else "<empty>"
    try:
        result = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise CommandExecutionFailure(name, f"timed out after {timeout}s")
    except OSError as e:
        raise CommandExecutionFailure(name, f"{type(e).__name__}: {e}")

    out = decode_output(result.stdout)
    log.debug("%s exited %s, %d bytes of output", " ".join(args), result.returncode, len(result.stdout or b""))

    if check and result.returncode != 0:
        err = decode_output(result.stderr).strip() or out.strip()
        raise CommandExecutionFailure(name, f"exit code {result.returncode}: {err[:200]}", result.returncode)
    return out


def decode_output(raw: bytes) -> str:
    """
    Windows console tools write in the OEM code page, not UTF-8.
    """
    if not raw:
        return ""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass
    try:
        return raw.decode("gbk")
    except UnicodeDecodeError:
        pass
    # single-byte, decodes anything
    return raw.decode("cp850")
