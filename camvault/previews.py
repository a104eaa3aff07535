from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Callable

from PIL import Image, ImageOps
from tqdm import tqdm

from . import media
from .commands import Runner, run_command

logger = logging.getLogger("camvault.previews")


class PreviewError(RuntimeError):
    pass


def files_without_preview(jpg_dir: Path, preview_dir: Path) -> list[Path]:
    if not jpg_dir.is_dir():
        return []
    return sorted(
        p for p in jpg_dir.iterdir() if p.is_file() and media.is_jpeg(p) and not (preview_dir / p.name).exists()
    )


def render_preview(src_path: Path, dst_path: Path, *, size: tuple[int, int], quality: int = 85) -> None:
    """
    - Auto-orient using EXIF orientation
    - Shrink to fit within `size` (never enlarge)
    - Save as JPEG without metadata
    """
    dst_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with Image.open(src_path) as im:
            im = ImageOps.exif_transpose(im)
            if im.mode != "RGB":
                im = im.convert("RGB")
            im.thumbnail(size, Image.Resampling.LANCZOS)
            im.save(dst_path, format="JPEG", quality=int(quality), optimize=True)
    except Exception as e:  # noqa: BLE001
        raise PreviewError(
            f"Failed to create preview: {src_path.name}\n"
            f"  Source: {src_path}\n"
            f"  Destination: {dst_path}\n"
            f"  Original error: {type(e).__name__}: {e}"
        ) from e


def create_previews(
    jpg_dir: Path,
    preview_dir: Path,
    *,
    size: tuple[int, int],
    show_progress: bool | None = None,
) -> list[Path]:
    """
    Render a preview for every JPEG that doesn't have one yet.

    Returns the created previews in sorted order. A file that fails to render
    is logged and skipped.
    """
    preview_dir.mkdir(parents=True, exist_ok=True)
    todo = files_without_preview(jpg_dir, preview_dir)
    logger.info(f"Creating {len(todo)} preview image(s) in {preview_dir}")

    created: list[Path] = []
    disable = None if show_progress is None else not show_progress
    for src in tqdm(todo, unit="img", disable=disable, leave=False):
        dst = preview_dir / src.name
        try:
            render_preview(src, dst, size=size)
        except PreviewError as e:
            logger.error(str(e))
            continue
        created.append(dst)
    return created


def write_viewer_script(first: Path, *, viewer: str, directory: Path, today: date | None = None) -> Path | None:
    """
    Write `<YYYY-MM-DD>.sh` that opens the day's first new preview. An
    existing script for the day is left alone.
    """
    today = today or date.today()
    script = directory / today.strftime("%Y-%m-%d.sh")
    if script.exists():
        return None
    directory.mkdir(parents=True, exist_ok=True)
    script.write_text(f'{viewer} "{first}"\n', encoding="utf-8")
    return script


def offer_to_open(
    first: Path,
    *,
    viewer: str,
    runner: Runner = run_command,
    ask: Callable[[str], str] = input,
) -> bool:
    print(f"First new file: {first}")
    try:
        answer = ask("Open? [Yn] ")
    except EOFError:
        return False
    if answer.strip().lower() == "n":
        return False
    res = runner([viewer, str(first)])
    if not res.ok:
        logger.warning(f"Image viewer '{viewer}' exited with {res.returncode}")
    return True
