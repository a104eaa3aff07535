"""
Lifecycle of the encrypted removable volume.

Mount the VeraCrypt container if it isn't mounted yet, let the caller work
against the mount point, then wait until nothing holds files open under it
and unmount. The unmount attempt runs on every exit path.
"""

from __future__ import annotations

import enum
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterator

from .commands import Runner, describe, run_command

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger("camvault.volume")

DEFAULT_ATTEMPTS = 20
DEFAULT_POLL_SECONDS = 2.0

# An action returns True on success (exit status 0).
Action = Callable[[], bool]


class VolumeError(RuntimeError):
    pass


class VolumeAbsentError(VolumeError):
    pass


class MountFailure(VolumeError):
    pass


class UnmountFailure(VolumeError):
    pass


class MountState(enum.Enum):
    UNMOUNTED = "unmounted"
    MOUNTED = "mounted"
    MOUNTED_BY_US = "mounted-by-us"


class UnmountOutcome(enum.Enum):
    UNMOUNTED = "unmounted"
    STILL_MOUNTED = "still-mounted"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class VolumeSession:
    container: Path
    mount_point: Path
    state: MountState
    mount_error: MountFailure | None = None
    unmount: UnmountOutcome | None = None


@dataclass
class LifecycleResult:
    skipped: bool
    session: VolumeSession | None = None
    value: Any = None
    warnings: list[str] = field(default_factory=list)

    @property
    def still_mounted(self) -> bool:
        return self.session is not None and self.session.unmount in (
            UnmountOutcome.STILL_MOUNTED,
            UnmountOutcome.FAILED,
        )


def veracrypt_mount_cmd(cfg: Config) -> list[str]:
    cmd = [
        cfg.veracrypt_bin,
        "--text",
        "--non-interactive",
        "--keyfiles",
        str(cfg.keyfile_path),
        "--mount",
        str(cfg.container_path),
        str(cfg.mount_path),
    ]
    return (["sudo"] + cmd) if cfg.use_sudo else cmd


def veracrypt_unmount_cmd(cfg: Config) -> list[str]:
    cmd = [cfg.veracrypt_bin, "--text", "--non-interactive", "-d", str(cfg.mount_path)]
    return (["sudo"] + cmd) if cfg.use_sudo else cmd


class VolumeManager:
    def __init__(
        self,
        runner: Runner = run_command,
        *,
        mounts_file: Path = Path("/proc/mounts"),
        sleep: Callable[[float], None] = time.sleep,
        unmount_external: bool = True,
    ):
        self.runner = runner
        self.mounts_file = mounts_file
        self.sleep = sleep
        self.unmount_external = unmount_external

    def command_action(self, cmd: list[str]) -> Action:
        def _action() -> bool:
            res = self.runner(cmd)
            if not res.ok:
                logger.debug(describe(cmd, res))
            return res.ok

        return _action

    def is_mounted(self, mount_point: Path) -> bool:
        """
        True if the live mount table has an entry for `mount_point`.

        Uses findmnt; an autofs placeholder does not count as mounted. Falls
        back to reading the mount table when findmnt is not installed.
        """
        path_str = str(mount_point)
        res = self.runner(["findmnt", "-n", "-o", "FSTYPE,SOURCE", path_str], timeout=2)
        if res.returncode == 127:
            logger.debug("findmnt not available, falling back to the mount table")
            return self._in_mount_table(path_str)
        if not res.ok:
            return False

        output = res.stdout.strip()
        if not output:
            return False
        fstype, _, source = output.partition(" ")
        source = source.strip()
        if fstype == "autofs" or source.startswith("systemd-1"):
            logger.debug(f"{mount_point} is an automount placeholder ({fstype} {source})")
            return False
        return True

    def _in_mount_table(self, path_str: str) -> bool:
        try:
            text = self.mounts_file.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug(f"Cannot read {self.mounts_file}: {e}")
            return False
        for line in text.splitlines():
            parts = line.split()
            if len(parts) >= 3 and parts[1].replace("\\040", " ") == path_str:
                return parts[2] != "autofs"
        return False

    def in_use(self, mount_point: Path) -> bool:
        # fuser exits 0 when some process has files open on the filesystem.
        return self.runner(["fuser", "-m", str(mount_point)]).ok

    def wait_and_unmount(
        self,
        mount_point: Path,
        unmount_action: Action,
        *,
        max_attempts: int = DEFAULT_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_SECONDS,
    ) -> UnmountOutcome:
        for attempt in range(1, max_attempts + 1):
            if self.in_use(mount_point):
                logger.info(f"Files locked under {mount_point} ({attempt}/{max_attempts})")
                if attempt < max_attempts:
                    self.sleep(poll_interval)
                continue

            logger.info(f"Unmounting {mount_point}")
            if unmount_action():
                return UnmountOutcome.UNMOUNTED
            logger.warning(f"Unmounting {mount_point} failed; the volume may still be mounted")
            return UnmountOutcome.FAILED

        logger.warning(
            f"{mount_point} is still in use after {max_attempts} checks; leaving it mounted.\n"
            f"  Close programs using it and unmount manually."
        )
        return UnmountOutcome.STILL_MOUNTED

    @contextmanager
    def mounted_volume(
        self,
        container: Path,
        mount_point: Path,
        mount_action: Action,
        unmount_action: Action,
        *,
        max_attempts: int = DEFAULT_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_SECONDS,
    ) -> Iterator[VolumeSession]:
        if not container.exists():
            raise VolumeAbsentError(f"Container not found: {container}")

        if self.is_mounted(mount_point):
            logger.info(f"{mount_point} already mounted")
            session = VolumeSession(container, mount_point, MountState.MOUNTED)
        else:
            logger.info(f"Mounting {container} at {mount_point}")
            session = VolumeSession(container, mount_point, MountState.MOUNTED_BY_US)
            if not mount_action():
                session.mount_error = MountFailure(f"Mounting {container} at {mount_point} failed")
                logger.error(str(session.mount_error))

        try:
            yield session
        finally:
            if session.state is MountState.MOUNTED and not self.unmount_external:
                logger.info(f"Leaving externally mounted {mount_point} mounted")
                session.unmount = UnmountOutcome.SKIPPED
            else:
                session.unmount = self.wait_and_unmount(
                    mount_point,
                    unmount_action,
                    max_attempts=max_attempts,
                    poll_interval=poll_interval,
                )

    def with_mounted_volume(
        self,
        container: Path,
        mount_point: Path,
        mount_action: Action,
        unmount_action: Action,
        work: Callable[[], Any],
        *,
        max_attempts: int = DEFAULT_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_SECONDS,
    ) -> LifecycleResult:
        """
        Run `work` against the mounted volume.

        A missing container is not an error: nothing is invoked and the result
        is marked skipped. Exceptions from `work` propagate once the unmount
        attempt has run.
        """
        if not container.exists():
            logger.info(f"Container not found: {container}; skipping removable volume")
            return LifecycleResult(skipped=True)

        with self.mounted_volume(
            container,
            mount_point,
            mount_action,
            unmount_action,
            max_attempts=max_attempts,
            poll_interval=poll_interval,
        ) as session:
            result = LifecycleResult(skipped=False, session=session)
            result.value = work()

        if session.mount_error is not None:
            result.warnings.append(str(session.mount_error))
        if session.unmount is UnmountOutcome.STILL_MOUNTED:
            result.warnings.append(f"{mount_point} is still mounted (files in use)")
        elif session.unmount is UnmountOutcome.FAILED:
            result.warnings.append(str(UnmountFailure(f"Unmounting {mount_point} failed; it may still be mounted")))
        return result
