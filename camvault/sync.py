"""
Incremental copy of source files into destination directories.

A file is new when no file with the same basename exists in the destination.
Nothing else is compared, so re-running after an interrupted run only copies
what is still missing.
"""

from __future__ import annotations

import glob
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from tqdm import tqdm

logger = logging.getLogger("camvault.sync")

_BRACES_RE = re.compile(r"\{([^{}]*)\}")

ProgressCallback = Callable[["SyncPair", int, int], None]


class CopyFailure(RuntimeError):
    pass


@dataclass(frozen=True)
class SyncPair:
    source: str
    destination: Path


@dataclass
class PairReport:
    pair: SyncPair
    discovered: int = 0
    new: int = 0
    copied: int = 0
    error: CopyFailure | None = None


@dataclass
class SyncReport:
    pairs: list[PairReport] = field(default_factory=list)

    @property
    def copied(self) -> int:
        return sum(p.copied for p in self.pairs)

    @property
    def failures(self) -> list[PairReport]:
        return [p for p in self.pairs if p.error is not None]

    @property
    def ok(self) -> bool:
        return not self.failures


def expand_braces(pattern: str) -> list[str]:
    """
    Expand `{A,B}` alternations: "*{NEF,MOV}" -> ["*NEF", "*MOV"].
    """
    m = _BRACES_RE.search(pattern)
    if m is None:
        return [pattern]
    head, tail = pattern[: m.start()], pattern[m.end() :]
    out: list[str] = []
    for alt in m.group(1).split(","):
        out.extend(expand_braces(head + alt + tail))
    return out


def expand_source(pattern: str) -> list[Path]:
    found: set[Path] = set()
    for p in expand_braces(pattern):
        for hit in glob.glob(p, recursive=True):
            path = Path(hit)
            if path.is_file():
                found.add(path)
    return sorted(found)


def new_files(pair: SyncPair) -> tuple[list[Path], list[Path]]:
    """
    Returns (all source files, those missing from the destination by basename).
    """
    sources = expand_source(pair.source)
    missing = [p for p in sources if not (pair.destination / p.name).exists()]
    return sources, missing


def _partial_path(dst: Path) -> Path:
    # Dot-prefixed so "<dir>/*" globs never pick up an unfinished copy.
    return dst.with_name(f".{dst.name}.part")


def _copy2_ignore_existing(src: Path, dst: Path) -> bool:
    """
    Copy `src` to `dst` unless `dst` exists. The data goes to a temporary
    name first and is renamed into place once complete, so a failed copy
    never leaves a truncated file under the real name.
    """
    if dst.exists():
        return False
    tmp = _partial_path(dst)
    try:
        shutil.copy2(src, tmp)
        tmp.replace(dst)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    return True


def _sync_pair(pair: SyncPair, *, show_progress: bool | None, on_progress: ProgressCallback | None) -> PairReport:
    report = PairReport(pair=pair)
    try:
        pair.destination.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        report.error = CopyFailure(f"Cannot create destination {pair.destination}: {e}")
        logger.error(str(report.error))
        return report

    sources, missing = new_files(pair)
    report.discovered = len(sources)
    report.new = len(missing)
    logger.info(f"Copying {pair.source} to {pair.destination} ({len(missing)} new of {len(sources)})")

    # tqdm disables itself on non-TTY output when disable=None.
    disable = None if show_progress is None else not show_progress
    with tqdm(total=len(missing), unit="file", disable=disable, leave=False) as bar:
        for i, src in enumerate(missing, 1):
            dst = pair.destination / src.name
            try:
                if _copy2_ignore_existing(src, dst):
                    report.copied += 1
                else:
                    logger.debug(f"  Skipped (appeared at destination meanwhile): {src.name}")
            except OSError as e:
                report.error = CopyFailure(
                    f"Copy failed: {src} -> {dst}\n"
                    f"  Error: {e}\n"
                    f"  {report.copied} file(s) already copied were kept; re-run to copy the rest."
                )
                logger.error(str(report.error))
                return report
            bar.update(1)
            if on_progress is not None:
                on_progress(pair, i, len(missing))

    return report


def sync(
    pairs: list[SyncPair],
    *,
    show_progress: bool | None = None,
    on_progress: ProgressCallback | None = None,
) -> SyncReport:
    """
    Copy every new source file of each pair into its destination.

    A copy error stops the rest of that pair; the other pairs still run.
    """
    report = SyncReport()
    for pair in pairs:
        report.pairs.append(_sync_pair(pair, show_progress=show_progress, on_progress=on_progress))
    logger.info(f"Sync done: {report.copied} file(s) copied, {len(report.failures)} pair(s) failed")
    return report
