"""Filesystem staging, thumbnails and category relocation."""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .errors import StorageError, UnreadableAsset
from .models import SURFACE_SLOTS

logger = logging.getLogger(__name__)

THUMB_SUFFIX = "_thumb.jpg"
MODEL_STEM = "model"


def thumbnail_path_for(path: Path) -> Path:
    """Return ``<dir>/<stem>_thumb.jpg`` for an image path."""
    return path.with_name(f"{path.stem}{THUMB_SUFFIX}")


def _is_thumbnail(path: Path) -> bool:
    return path.name.endswith(THUMB_SUFFIX)


class ContentStore:
    """Staging area plus the permanent ``categories/`` tree under one root."""

    def __init__(self, data_root: Path, thumbnail_size: int = 300):
        self.data_root = Path(data_root)
        self.temp_dir = self.data_root / "temp"
        self.categories_dir = self.data_root / "categories"
        self.thumbnail_size = thumbnail_size

    def initialize(self) -> None:
        for directory in (self.temp_dir, self.categories_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def category_dir(self, category: str) -> Path:
        directory = self.categories_dir / category
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def relative(self, path: Path) -> str:
        """Return ``path`` relative to the data root with POSIX separators."""
        return Path(path).relative_to(self.data_root).as_posix()

    # -- staging ---------------------------------------------------------

    def stage_single(self, data: bytes, filename: str) -> Tuple[str, Path]:
        asset_id = str(uuid.uuid4())
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        staged_path = self.temp_dir / f"{asset_id}{Path(filename).suffix.lower()}"
        try:
            staged_path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to stage {filename}: {exc}") from exc
        logger.debug("Staged %s as %s", filename, staged_path)
        return asset_id, staged_path

    def stage_multi_view(
        self,
        slots: Mapping[str, Tuple[bytes, str]],
        model: Optional[Tuple[bytes, str]] = None,
    ) -> Tuple[str, Dict[str, Path], Optional[Path]]:
        """Write every slot (and the optional model file) into ``temp/<id>/``."""
        asset_id = str(uuid.uuid4())
        object_dir = self.temp_dir / asset_id
        staged_paths: Dict[str, Path] = {}
        model_path: Optional[Path] = None
        try:
            object_dir.mkdir(parents=True, exist_ok=True)
            if model is not None:
                model_data, model_filename = model
                model_path = object_dir / f"{MODEL_STEM}{Path(model_filename).suffix.lower()}"
                model_path.write_bytes(model_data)
            for slot, (data, filename) in slots.items():
                slot_path = object_dir / f"{slot}{Path(filename).suffix.lower()}"
                slot_path.write_bytes(data)
                staged_paths[slot] = slot_path
        except OSError as exc:
            raise StorageError(f"Failed to stage multi-view set {asset_id}: {exc}") from exc
        logger.debug("Staged %d views for %s", len(staged_paths), asset_id)
        return asset_id, staged_paths, model_path

    def stage_single_file(self, source: Path) -> Tuple[str, Path]:
        source = Path(source)
        return self.stage_single(_read_source(source), source.name)

    def stage_multi_view_files(
        self, slot_files: Mapping[str, Path], model_file: Optional[Path] = None
    ) -> Tuple[str, Dict[str, Path], Optional[Path]]:
        slots = {slot: (_read_source(Path(p)), Path(p).name) for slot, p in slot_files.items()}
        model = None
        if model_file is not None:
            model = (_read_source(Path(model_file)), Path(model_file).name)
        return self.stage_multi_view(slots, model)

    def discard_staged(self, path: Path) -> None:
        """Remove a staged file or object directory for an upload that was rejected."""
        path = Path(path)
        if path.parent != self.temp_dir:
            raise StorageError(f"Refusing to discard {path}: not in the staging area")
        try:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
        except OSError as exc:
            raise StorageError(f"Failed to discard {path.name}: {exc}") from exc
        logger.debug("Discarded staged upload %s", path.name)

    # -- probes ----------------------------------------------------------

    def thumbnail(self, path: Path) -> Path:
        """Fit the image into a square box and save it as ``<stem>_thumb.jpg``."""
        path = Path(path)
        thumb_path = thumbnail_path_for(path)
        try:
            with Image.open(path) as img:
                img.load()
                thumb = img.convert("RGB")
                thumb.thumbnail((self.thumbnail_size, self.thumbnail_size), Image.LANCZOS)
                thumb.save(thumb_path, "JPEG")
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise UnreadableAsset(f"Failed to thumbnail {path.name}: {exc}") from exc
        return thumb_path

    def thumbnails(self, slot_paths: Mapping[str, Path]) -> Dict[str, Path]:
        return {slot: self.thumbnail(path) for slot, path in slot_paths.items()}

    def image_dimensions(self, path: Path) -> Tuple[int, int]:
        path = Path(path)
        try:
            with Image.open(path) as img:
                width, height = img.size
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise UnreadableAsset(f"Failed to read dimensions of {path.name}: {exc}") from exc
        return width, height

    def file_size(self, path: Path) -> int:
        try:
            return Path(path).stat().st_size
        except OSError as exc:
            raise StorageError(f"Failed to stat {path}: {exc}") from exc

    # -- relocation ------------------------------------------------------

    def relocate_single(self, asset_id: str, staged_path: Path, category: str) -> Tuple[str, str]:
        """Move an image and its thumbnail into ``categories/<category>/`` as a pair.

        If the thumbnail move fails, the image is moved back into staging
        before the error is raised.
        """
        staged_path = Path(staged_path)
        staged_thumb = thumbnail_path_for(staged_path)
        try:
            target_dir = self.category_dir(category)
        except OSError as exc:
            raise StorageError(f"Failed to create category {category}: {exc}") from exc

        final_path = target_dir / f"{asset_id}{staged_path.suffix}"
        final_thumb = target_dir / f"{asset_id}{THUMB_SUFFIX}"

        try:
            staged_path.rename(final_path)
        except OSError as exc:
            raise StorageError(f"Failed to move {staged_path.name}: {exc}") from exc

        try:
            staged_thumb.rename(final_thumb)
        except OSError as exc:
            try:
                final_path.rename(staged_path)
            except OSError:
                logger.exception("Could not restore %s to staging", staged_path)
            raise StorageError(f"Failed to move thumbnail for {asset_id}: {exc}") from exc

        logger.info("Relocated %s into %s", asset_id, category)
        return self.relative(final_path), self.relative(final_thumb)

    def relocate_multi_view(
        self, asset_id: str, staged_dir: Path, category: str
    ) -> Tuple[str, Dict[str, str], Optional[str]]:
        """Rename the whole staged directory into the category, then map slots."""
        staged_dir = Path(staged_dir)
        try:
            final_dir = self.category_dir(category) / asset_id
            staged_dir.rename(final_dir)
        except OSError as exc:
            raise StorageError(f"Failed to move object directory {asset_id}: {exc}") from exc

        views: Dict[str, str] = {}
        model_path: Optional[str] = None
        for entry in sorted(final_dir.iterdir()):
            if not entry.is_file() or _is_thumbnail(entry):
                continue
            if entry.stem == MODEL_STEM:
                model_path = self.relative(entry)
            elif entry.stem in SURFACE_SLOTS:
                views[entry.stem] = self.relative(entry)

        logger.info("Relocated %d views of %s into %s", len(views), asset_id, category)
        return self.relative(final_dir), views, model_path


def _read_source(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise StorageError(f"Failed to read {path}: {exc}") from exc
