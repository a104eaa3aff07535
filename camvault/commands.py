from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable


@dataclass(frozen=True)
class CmdResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


# runner(cmd, *, cwd=None, timeout=None) -> CmdResult
Runner = Callable[..., CmdResult]


def run_command(cmd: list[str], *, cwd: Path | None = None, timeout: float | None = None) -> CmdResult:
    """
    Run an external command and capture its output.

    A missing executable is reported as return code 127 and a timeout as 124,
    so callers only ever have to look at the exit status.
    """
    try:
        p = subprocess.run(
            cmd,
            text=True,
            capture_output=True,
            cwd=str(cwd) if cwd is not None else None,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        return CmdResult(returncode=127, stdout="", stderr=str(e))
    except subprocess.TimeoutExpired as e:
        return CmdResult(returncode=124, stdout="", stderr=f"Timed out after {e.timeout}s: {' '.join(cmd)}")
    return CmdResult(returncode=p.returncode, stdout=p.stdout or "", stderr=(p.stderr or "").strip())


def describe(cmd: list[str], res: CmdResult) -> str:
    msg = f"Command failed ({res.returncode}): {' '.join(cmd)}"
    if res.returncode == 127:
        msg += f"\n  '{cmd[0]}' was not found on PATH."
    if res.stderr:
        msg += f"\n  stderr: {res.stderr}"
    return msg
