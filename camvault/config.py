from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .device import RangeMode

ENV_PREFIX = "CAMVAULT_"
_TRUTHY = ("true", "1", "yes", "on", "enabled")
_FALSY = ("false", "0", "no", "off", "disabled")


class ConfigError(ValueError):
    pass


def _expand(p: str | Path) -> Path:
    return Path(os.path.expanduser(str(p))).resolve()


def _split_list(s: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in s.split(",") if p.strip())


def _parse_size(s: str) -> tuple[int, int]:
    # "1280x1280"
    if "x" not in s.lower():
        raise ConfigError(f"Invalid size '{s}' (expected like 1280x1280)")
    w, h = s.lower().split("x", 1)
    try:
        size = int(w), int(h)
    except ValueError:
        raise ConfigError(f"Invalid size '{s}' (expected like 1280x1280)") from None
    if min(size) <= 0:
        raise ConfigError(f"Invalid size '{s}' (both sides must be positive)")
    return size


def _parse_bool(name: str, s: str) -> bool:
    v = s.strip().lower()
    if v in _TRUTHY:
        return True
    if v in _FALSY:
        return False
    raise ConfigError(f"Invalid boolean for {name}: {s!r}")


def _parse_number(name: str, s: str, kind: type) -> int | float:
    try:
        return kind(s)
    except ValueError:
        raise ConfigError(f"Invalid value for {name}: {s!r}") from None


def read_env_file(path: Path) -> dict[str, str]:
    """
    Read CAMVAULT_* KEY=VALUE lines. Comments, blank lines and other keys are
    ignored; surrounding quotes are stripped.
    """
    values: dict[str, str] = {}
    if not path.is_file():
        return values
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        if key.startswith(ENV_PREFIX):
            values[key] = value.strip().strip('"').strip("'")
    return values


@dataclass(frozen=True)
class Config:
    source_location: Path
    raw_output_dir: Path
    jpg_output_dir: Path
    raw_extensions: tuple[str, ...]
    jpg_extensions: tuple[str, ...]

    container_path: Path
    mount_path: Path
    photos_path: Path
    keyfile_path: Path
    veracrypt_bin: str
    use_sudo: bool
    unmount_attempts: int
    unmount_poll_seconds: float
    unmount_external_mounts: bool

    gphoto2_bin: str
    range_mode: RangeMode
    unmount_source: bool

    preview_dir: Path
    preview_size: tuple[int, int]
    image_viewer: str

    log_file: Path | None


def load_config(
    *,
    env: Mapping[str, str] | None = None,
    env_file: str | Path | None = None,
    **overrides: object,
) -> Config:
    """
    Build the Config once at startup.

    Precedence: keyword overrides, then the process environment, then the env
    file (CAMVAULT_ENV_FILE, default ./.env), then built-in defaults.
    """
    env = dict(os.environ if env is None else env)
    env_file = env_file or env.get("CAMVAULT_ENV_FILE") or ".env"
    merged = {**read_env_file(_expand(env_file)), **{k: v for k, v in env.items() if v.strip()}}

    unknown = set(overrides) - set(Config.__dataclass_fields__)
    if unknown:
        raise ConfigError(f"Unknown config option(s): {', '.join(sorted(unknown))}")

    def get(name: str, default: str) -> str:
        value = overrides.get(name)
        if isinstance(value, RangeMode):
            return value.value
        if value is not None:
            return str(value)
        return merged.get(ENV_PREFIX + name.upper(), default)

    mount_path = _expand(get("mount_path", "/mnt/camvault"))
    raw_mode = get("range_mode", RangeMode.TO_END.value)
    try:
        range_mode = RangeMode(raw_mode)
    except ValueError:
        modes = ", ".join(m.value for m in RangeMode)
        raise ConfigError(f"Invalid range mode {raw_mode!r} (expected one of: {modes})") from None

    attempts = int(_parse_number("unmount_attempts", get("unmount_attempts", "20"), int))
    if attempts < 1:
        raise ConfigError(f"unmount_attempts must be at least 1 (got {attempts})")

    log_file = get("log_file", "")
    raw_extensions = _split_list(get("raw_extensions", "NEF,MOV"))
    jpg_extensions = _split_list(get("jpg_extensions", "JPG"))
    if not raw_extensions or not jpg_extensions:
        raise ConfigError("raw_extensions and jpg_extensions must not be empty")

    return Config(
        source_location=_expand(get("source_location", "~/camvault/incoming")),
        raw_output_dir=_expand(get("raw_output_dir", "~/camvault/raw")),
        jpg_output_dir=_expand(get("jpg_output_dir", "~/camvault/jpg")),
        raw_extensions=raw_extensions,
        jpg_extensions=jpg_extensions,
        container_path=_expand(get("container_path", "/media/usb/camvault.hc")),
        mount_path=mount_path,
        photos_path=_expand(get("photos_path", str(mount_path / "photos"))),
        keyfile_path=_expand(get("keyfile_path", "~/.camvault/keyfile.txt")),
        veracrypt_bin=get("veracrypt_bin", "/usr/bin/veracrypt"),
        use_sudo=_parse_bool("use_sudo", get("use_sudo", "true")),
        unmount_attempts=attempts,
        unmount_poll_seconds=float(_parse_number("unmount_poll_seconds", get("unmount_poll_seconds", "2"), float)),
        unmount_external_mounts=_parse_bool(
            "unmount_external_mounts", get("unmount_external_mounts", "true")
        ),
        gphoto2_bin=get("gphoto2_bin", "gphoto2"),
        range_mode=range_mode,
        unmount_source=_parse_bool("unmount_source", get("unmount_source", "true")),
        preview_dir=_expand(get("preview_dir", "~/camvault/previews")),
        preview_size=_parse_size(get("preview_size", "1280x1280")),
        image_viewer=get("image_viewer", "xdg-open"),
        log_file=_expand(log_file) if log_file.strip() else None,
    )
