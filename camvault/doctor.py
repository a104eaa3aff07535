from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .config import Config
from .volume import veracrypt_mount_cmd, veracrypt_unmount_cmd


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    message: str
    is_fatal: bool = False


TOOLS = {
    "gphoto2": "retrieving pictures from the camera",
    "fuser": "checking whether the encrypted volume is in use",
    "findmnt": "detecting mounted volumes",
    "sudo": "mounting the encrypted volume",
}


def _bytes_human(n: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    f = float(n)
    for u in units:
        if f < 1024.0 or u == units[-1]:
            return f"{f:.1f}{u}" if u != "B" else f"{int(f)}B"
        f /= 1024.0
    return f"{int(n)}B"


def _existing_parent(path: Path) -> Path:
    while not path.exists() and path != path.parent:
        path = path.parent
    return path


def _check_tool(name: str, purpose: str, which: Callable[[str], str | None], *, fatal: bool = False) -> CheckResult:
    found = which(name)
    if found is None:
        return CheckResult(f"tool:{name}", False, f"{name} not found on PATH (needed for {purpose})", is_fatal=fatal)
    return CheckResult(f"tool:{name}", True, f"{name}: {found}")


def _check_disk_space(path: Path, *, min_free_gb: float) -> CheckResult:
    try:
        usage = shutil.disk_usage(_existing_parent(path))
        free_gb = usage.free / (1024**3)
        ok = free_gb >= min_free_gb
        return CheckResult(
            name="disk_space",
            ok=ok,
            message=f"Free space at {path}: {_bytes_human(usage.free)} (min {min_free_gb:.1f}GB)",
            is_fatal=not ok,
        )
    except OSError as e:
        return CheckResult("disk_space", False, f"Failed to check disk space: {e}", is_fatal=False)


def _check_source(cfg: Config) -> CheckResult:
    if cfg.source_location.is_dir():
        return CheckResult("source", True, f"Source directory: {cfg.source_location}")
    return CheckResult("source", True, f"{cfg.source_location} does not exist (insert card to test)")


def _check_container(cfg: Config) -> CheckResult:
    if cfg.container_path.exists():
        return CheckResult("container", True, f"Encrypted container: {cfg.container_path}")
    return CheckResult(
        "container", True, f"{cfg.container_path} not present (removable backup will be skipped)"
    )


def _check_keyfile(cfg: Config) -> CheckResult:
    key = cfg.keyfile_path
    if not key.is_file():
        return CheckResult(
            "keyfile",
            False,
            f"Keyfile {key} not found. Create one with: camvault keyfile {key}",
            is_fatal=cfg.container_path.exists(),
        )
    # A keyfile stored next to the container protects nothing.
    if cfg.container_path.exists() and key.stat().st_dev == cfg.container_path.stat().st_dev:
        return CheckResult("keyfile", False, f"Keyfile {key} is on the same volume as the container")
    return CheckResult("keyfile", True, f"Keyfile: {key}")


def run_doctor(
    cfg: Config,
    *,
    min_free_gb: float = 2.0,
    which: Callable[[str], str | None] = shutil.which,
) -> tuple[int, list[CheckResult]]:
    results: list[CheckResult] = []
    results.append(CheckResult("config", True, f"Source: {cfg.source_location} | Container: {cfg.container_path}"))
    for name, purpose in TOOLS.items():
        results.append(_check_tool(name, purpose, which))
    results.append(_check_tool(cfg.veracrypt_bin, "the encrypted removable backup", which))
    results.append(_check_source(cfg))
    results.append(_check_container(cfg))
    results.append(_check_keyfile(cfg))
    for d in (cfg.raw_output_dir, cfg.jpg_output_dir):
        results.append(_check_disk_space(d, min_free_gb=min_free_gb))

    fatal = any((not r.ok) and r.is_fatal for r in results)
    rc = 2 if fatal else 0
    return rc, results


def format_results(results: list[CheckResult]) -> str:
    lines: list[str] = []
    for r in results:
        status = "OK" if r.ok else ("FAIL" if r.is_fatal else "WARN")
        lines.append(f"[{status}] {r.name}: {r.message}")
    return os.linesep.join(lines)


def sudoers_help(cfg: Config, *, user: str) -> str:
    # The sudoers alias lists the commands without the sudo prefix.
    mount = [c for c in veracrypt_mount_cmd(cfg) if c != "sudo"]
    unmount = [c for c in veracrypt_unmount_cmd(cfg) if c != "sudo"]
    return f"""\
Requirements:
- gphoto2 (retrieving pictures from the camera)
- VeraCrypt (encrypted copy on the removable drive)
- sudo rights to mount and unmount the VeraCrypt volume

VeraCrypt configuration:
Create a VeraCrypt container on the removable drive, secured with a keyfile
and no password. Keep the keyfile on this machine, not on the drive holding
the container, and back it up: losing it makes the encrypted backup useless.
Generate one with: camvault keyfile {cfg.keyfile_path}

Sudoers configuration (visudo), to mount without a password prompt:

Cmnd_Alias CAMVAULT = {' '.join(mount)}, \\
                      {' '.join(unmount)}

{user} ALL=NOPASSWD: CAMVAULT
"""
