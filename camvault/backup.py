from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .commands import Runner, describe, run_command
from .config import Config
from .device import (
    Camera,
    DeviceUnavailableError,
    NoNewFilesError,
    ProtocolParseError,
    RetrievalDirective,
    RetrievalError,
)
from .media import source_pattern
from .previews import create_previews, offer_to_open, write_viewer_script
from .sync import SyncPair, SyncReport, sync
from .volume import LifecycleResult, VolumeManager, veracrypt_mount_cmd, veracrypt_unmount_cmd

logger = logging.getLogger("camvault.backup")


class BackupError(RuntimeError):
    pass


@dataclass
class BackupReport:
    retrieved: RetrievalDirective | None = None
    primary: SyncReport | None = None
    removable: LifecycleResult | None = None
    previews: list[Path] = field(default_factory=list)
    # Operator-visible notes that don't make the run degraded.
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.errors)


def primary_pairs(cfg: Config) -> list[SyncPair]:
    return [
        SyncPair(source_pattern(cfg.source_location, cfg.raw_extensions), cfg.raw_output_dir),
        SyncPair(source_pattern(cfg.source_location, cfg.jpg_extensions), cfg.jpg_output_dir),
    ]


def removable_pairs(cfg: Config) -> list[SyncPair]:
    return [SyncPair(str(cfg.raw_output_dir / "*"), cfg.photos_path)]


def _record_sync(report: BackupReport, sync_report: SyncReport) -> None:
    for p in sync_report.failures:
        report.errors.append(f"{p.pair.source} -> {p.pair.destination}: {str(p.error).splitlines()[0]}")


def _retrieve(cfg: Config, camera: Camera, report: BackupReport) -> None:
    if not cfg.source_location.is_dir():
        report.warnings.append(f"{cfg.source_location} does not exist, not retrieving from camera")
        logger.warning(report.warnings[-1])
        return
    logger.info("Retrieving pictures from camera")
    try:
        report.retrieved = camera.retrieve(cfg.source_location, mode=cfg.range_mode)
    except NoNewFilesError as e:
        logger.info(str(e))
    except DeviceUnavailableError as e:
        report.warnings.append(str(e).splitlines()[0])
        logger.warning(str(e))
    except (ProtocolParseError, RetrievalError) as e:
        report.errors.append(str(e).splitlines()[0])
        logger.error(str(e))


def _backup_source(cfg: Config, vm: VolumeManager, runner: Runner, report: BackupReport, show_progress) -> None:
    src = cfg.source_location
    if not src.is_dir():
        report.warnings.append(f"{src} not mounted, not backing up")
        logger.warning(report.warnings[-1])
        return

    report.primary = sync(primary_pairs(cfg), show_progress=show_progress)
    _record_sync(report, report.primary)
    logger.info("Backup done")

    if cfg.unmount_source and vm.is_mounted(src):
        cmd = ["umount", str(src)]
        res = runner(cmd)
        if res.ok:
            logger.info(f"Unmounted {src}")
        else:
            report.warnings.append(f"Could not unmount {src}")
            logger.warning(describe(cmd, res))


def _backup_removable(cfg: Config, vm: VolumeManager, report: BackupReport, show_progress) -> None:
    def work() -> SyncReport:
        return sync(removable_pairs(cfg), show_progress=show_progress)

    try:
        result = vm.with_mounted_volume(
            cfg.container_path,
            cfg.mount_path,
            vm.command_action(veracrypt_mount_cmd(cfg)),
            vm.command_action(veracrypt_unmount_cmd(cfg)),
            work,
            max_attempts=cfg.unmount_attempts,
            poll_interval=cfg.unmount_poll_seconds,
        )
    except Exception as e:  # noqa: BLE001
        report.errors.append(f"Removable volume backup failed: {type(e).__name__}: {e}")
        logger.exception(report.errors[-1])
        return

    report.removable = result
    if result.value is not None:
        _record_sync(report, result.value)
    for w in result.warnings:
        report.errors.append(w)
        logger.warning(w)


def _previews(cfg: Config, runner: Runner, report: BackupReport, *, prompt: bool, ask, show_progress) -> None:
    report.previews = create_previews(
        cfg.jpg_output_dir, cfg.preview_dir, size=cfg.preview_size, show_progress=show_progress
    )
    if not report.previews:
        return
    first = report.previews[0]
    script = write_viewer_script(first, viewer=cfg.image_viewer, directory=cfg.preview_dir)
    if script is not None:
        logger.info(f"Wrote {script}")
    if prompt:
        offer_to_open(first, viewer=cfg.image_viewer, runner=runner, ask=ask)


def run_backup(
    cfg: Config,
    *,
    runner: Runner = run_command,
    camera: Camera | None = None,
    volumes: VolumeManager | None = None,
    retrieve: bool = True,
    previews: bool = True,
    prompt: bool = True,
    ask: Callable[[str], str] = input,
    show_progress: bool | None = None,
) -> BackupReport:
    """
    Camera -> source dir -> local destinations -> encrypted volume -> previews.

    Every stage runs even when an earlier one degrades; problems are collected
    in the returned report.
    """
    camera = camera or Camera(runner, gphoto2=cfg.gphoto2_bin)
    volumes = volumes or VolumeManager(runner, unmount_external=cfg.unmount_external_mounts)
    report = BackupReport()

    if retrieve:
        _retrieve(cfg, camera, report)
    _backup_source(cfg, volumes, runner, report, show_progress)
    _backup_removable(cfg, volumes, report, show_progress)
    if previews:
        try:
            _previews(cfg, runner, report, prompt=prompt, ask=ask, show_progress=show_progress)
        except OSError as e:
            err = BackupError(
                f"Creating previews in {cfg.preview_dir} failed: {e}\n"
                f"  Try: check that the directory is writable."
            )
            report.errors.append(str(err).splitlines()[0])
            logger.error(str(err))
    return report
