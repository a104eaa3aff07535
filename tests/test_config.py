from __future__ import annotations

from pathlib import Path

import pytest

from camvault.config import ConfigError, _parse_size, _split_list, load_config, read_env_file
from camvault.device import RangeMode


def test_parse_size():
    assert _parse_size("800x480") == (800, 480)
    assert _parse_size("1920X1080") == (1920, 1080)

    with pytest.raises(ConfigError, match="Invalid size"):
        _parse_size("800")
    with pytest.raises(ConfigError, match="Invalid size"):
        _parse_size("axb")
    with pytest.raises(ConfigError):
        _parse_size("0x100")


def test_split_list():
    assert _split_list("NEF,MOV") == ("NEF", "MOV")
    assert _split_list(" NEF , MOV ,") == ("NEF", "MOV")
    assert _split_list("") == ()


def test_load_config_defaults(tmp_path: Path):
    cfg = load_config(env={}, env_file=tmp_path / "missing.env")
    assert cfg.raw_extensions == ("NEF", "MOV")
    assert cfg.jpg_extensions == ("JPG",)
    assert cfg.mount_path == Path("/mnt/camvault").resolve()
    assert cfg.photos_path == cfg.mount_path / "photos"
    assert cfg.unmount_attempts == 20
    assert cfg.unmount_poll_seconds == 2.0
    assert cfg.unmount_external_mounts is True
    assert cfg.range_mode is RangeMode.TO_END
    assert cfg.use_sudo is True
    assert cfg.log_file is None
    assert "camvault" in str(cfg.raw_output_dir)


def test_load_config_env_overrides(tmp_path: Path):
    env = {
        "CAMVAULT_SOURCE_LOCATION": str(tmp_path / "card"),
        "CAMVAULT_MOUNT_PATH": str(tmp_path / "mnt"),
        "CAMVAULT_UNMOUNT_ATTEMPTS": "5",
        "CAMVAULT_UNMOUNT_EXTERNAL_MOUNTS": "no",
        "CAMVAULT_RANGE_MODE": "listing-size",
        "CAMVAULT_PREVIEW_SIZE": "640x480",
        "CAMVAULT_RAW_EXTENSIONS": "NEF",
    }
    cfg = load_config(env=env, env_file=tmp_path / "missing.env")

    assert cfg.source_location == tmp_path / "card"
    assert cfg.photos_path == tmp_path / "mnt" / "photos"
    assert cfg.unmount_attempts == 5
    assert cfg.unmount_external_mounts is False
    assert cfg.range_mode is RangeMode.LISTING_SIZE
    assert cfg.preview_size == (640, 480)
    assert cfg.raw_extensions == ("NEF",)


def test_load_config_arg_overrides(tmp_path: Path):
    env = {"CAMVAULT_IMAGE_VIEWER": "feh", "CAMVAULT_USE_SUDO": "true"}
    cfg = load_config(
        env=env,
        env_file=tmp_path / "missing.env",
        image_viewer="eog",
        use_sudo=False,
        range_mode=RangeMode.LISTING_SIZE,
    )
    assert cfg.image_viewer == "eog"
    assert cfg.use_sudo is False
    assert cfg.range_mode is RangeMode.LISTING_SIZE


def test_load_config_env_file(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# camvault settings\n"
        "\n"
        'CAMVAULT_JPG_OUTPUT_DIR="/srv/photos/jpg"\n'
        "export CAMVAULT_IMAGE_VIEWER='feh'\n"
        "OTHER_SETTING=ignored\n",
        encoding="utf-8",
    )
    cfg = load_config(env={"CAMVAULT_IMAGE_VIEWER": "eog"}, env_file=env_file)

    assert cfg.jpg_output_dir == Path("/srv/photos/jpg").resolve()
    # process environment wins over the file
    assert cfg.image_viewer == "eog"


def test_load_config_env_file_from_environment(tmp_path: Path):
    env_file = tmp_path / "camvault.env"
    env_file.write_text("CAMVAULT_GPHOTO2_BIN=/opt/bin/gphoto2\n", encoding="utf-8")
    cfg = load_config(env={"CAMVAULT_ENV_FILE": str(env_file)})
    assert cfg.gphoto2_bin == "/opt/bin/gphoto2"


def test_read_env_file_missing(tmp_path: Path):
    assert read_env_file(tmp_path / "nope.env") == {}


@pytest.mark.parametrize(
    "env",
    [
        {"CAMVAULT_UNMOUNT_ATTEMPTS": "many"},
        {"CAMVAULT_UNMOUNT_ATTEMPTS": "0"},
        {"CAMVAULT_USE_SUDO": "perhaps"},
        {"CAMVAULT_RANGE_MODE": "all"},
        {"CAMVAULT_UNMOUNT_POLL_SECONDS": "soon"},
        {"CAMVAULT_JPG_EXTENSIONS": " , "},
    ],
)
def test_load_config_invalid(tmp_path: Path, env: dict[str, str]):
    with pytest.raises(ConfigError):
        load_config(env=env, env_file=tmp_path / "missing.env")


def test_load_config_unknown_override(tmp_path: Path):
    with pytest.raises(ConfigError, match="Unknown"):
        load_config(env={}, env_file=tmp_path / "missing.env", sd_label="x")


def test_config_is_frozen(tmp_path: Path):
    cfg = load_config(env={}, env_file=tmp_path / "missing.env")
    with pytest.raises(AttributeError):
        cfg.mount_path = Path("/elsewhere")  # type: ignore[misc]
