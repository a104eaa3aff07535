"""
Camera file index handling on top of gphoto2.

gphoto2 numbers the files on a camera and can only fetch contiguous index
ranges, so retrieval works out the first index whose file is not yet present
locally and asks for everything from there on.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .commands import Runner, describe, run_command

logger = logging.getLogger("camvault.device")

# "#12    DSC_0958.JPG    rd  5573 KB 4288x2848 image/jpeg 1565280230"
_RECORD_RE = re.compile(r"^#\D*(\d+)\s+(\S+)")

VOLUME_MONITORS = ("gvfs-gphoto2-volume-monitor", "gvfsd-gphoto2")


class DeviceError(RuntimeError):
    pass


class DeviceUnavailableError(DeviceError):
    pass


class NoNewFilesError(DeviceError):
    pass


class ProtocolParseError(DeviceError):
    pass


class RetrievalError(DeviceError):
    pass


class RangeMode(str, enum.Enum):
    # count = number of files in the listing
    LISTING_SIZE = "listing-size"
    # count = max_index - start_index + 1
    TO_END = "to-end"


@dataclass(frozen=True)
class RetrievalDirective:
    start_index: int
    count: int

    @property
    def end_index(self) -> int:
        return self.start_index + self.count - 1

    @property
    def range_arg(self) -> str:
        return f"{self.start_index}-{self.end_index}"


def parse_listing(raw_text: str) -> dict[int, str]:
    """
    Parse `gphoto2 --list-files` output into an index -> filename mapping.

    Lines that are not `#<index> <filename> ...` records are ignored. Output
    without any `#` lines is a valid empty listing; output that has `#` lines
    but not a single parseable record raises ProtocolParseError.
    """
    listing: dict[int, str] = {}
    marked = 0
    for line in raw_text.splitlines():
        line = line.strip()
        if not line.startswith("#"):
            continue
        marked += 1
        m = _RECORD_RE.match(line)
        if m is None:
            logger.debug(f"Ignoring unparseable listing line: {line!r}")
            continue
        listing[int(m.group(1))] = m.group(2)

    if marked and not listing:
        raise ProtocolParseError(
            f"Could not parse the camera file listing ({marked} record-like lines, 0 records).\n"
            f"  Expected lines like '#1  DSC_0001.JPG ...'.\n"
            f"  Try: run 'gphoto2 --list-files' manually and check its output."
        )
    return dict(sorted(listing.items()))


def next_new_range(
    listing: dict[int, str],
    existing_filenames: set[str] | frozenset[str],
    *,
    mode: RangeMode | str = RangeMode.LISTING_SIZE,
) -> RetrievalDirective:
    mode = RangeMode(mode)
    for index in sorted(listing):
        if listing[index] not in existing_filenames:
            break
    else:
        raise NoNewFilesError("No new photos on the camera")

    if mode is RangeMode.TO_END:
        count = max(listing) - index + 1
    else:
        count = len(listing)
    return RetrievalDirective(start_index=index, count=count)


def existing_basenames(directory: Path) -> set[str]:
    if not directory.is_dir():
        return set()
    return {p.name for p in directory.iterdir()}


class Camera:
    def __init__(self, runner: Runner = run_command, *, gphoto2: str = "gphoto2", kill_monitors: bool = True):
        self.runner = runner
        self.gphoto2 = gphoto2
        self.kill_monitors = kill_monitors

    def kill_volume_monitors(self) -> None:
        # Desktop agents grab the camera over PTP and make gphoto2 fail.
        if not self.kill_monitors:
            return
        for name in VOLUME_MONITORS:
            self.runner(["killall", name])

    def list_files(self) -> dict[int, str]:
        self.kill_volume_monitors()
        cmd = [self.gphoto2, "--list-files"]
        res = self.runner(cmd)
        if not res.ok:
            raise DeviceUnavailableError(
                f"No camera found.\n"
                f"  {describe(cmd, res)}\n"
                f"  Try: connect the camera over USB and switch it on."
            )
        return parse_listing(res.stdout)

    def retrieve(self, destination: Path, *, mode: RangeMode | str = RangeMode.LISTING_SIZE) -> RetrievalDirective:
        """
        Fetch every file from the first one missing in `destination` onwards.
        """
        listing = self.list_files()
        existing = existing_basenames(destination)
        directive = next_new_range(listing, existing, mode=mode)
        logger.info(
            f"Camera lists {len(listing)} files; fetching {directive.count} starting at #{directive.start_index}"
        )

        cmd = [self.gphoto2, f"--get-file={directive.range_arg}"]
        res = self.runner(cmd, cwd=destination)
        if not res.ok:
            raise RetrievalError(f"Retrieving {directive.range_arg} from the camera failed.\n  {describe(cmd, res)}")
        return directive
