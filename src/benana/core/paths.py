"""Filesystem layout of the local studio.

Thumbnails, reference images and brand assets are stored relative to the studio
root. Originals are stored as absolute paths because a project may redirect them to
an output directory outside the root.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")


@dataclass(frozen=True)
class StudioPaths:
    """All well-known locations below one studio root directory."""

    root: Path

    @property
    def config(self) -> Path:
        return self.root / "config.json"

    @property
    def database(self) -> Path:
        return self.root / "studio.db"

    @property
    def api_key_file(self) -> Path:
        return self.root / ".apikey-key.bin"

    @property
    def images_originals(self) -> Path:
        return self.root / "images" / "originals"

    @property
    def images_thumbnails(self) -> Path:
        return self.root / "images" / "thumbnails"

    @property
    def images_references(self) -> Path:
        return self.root / "images" / "references"

    @property
    def brand_assets(self) -> Path:
        return self.root / "projects" / "brand-assets"

    @property
    def exports(self) -> Path:
        return self.root / "exports"

    @property
    def prompts(self) -> Path:
        return self.root / "prompts"

    @property
    def projects(self) -> Path:
        return self.root / "projects"

    def resolve(self, stored_path: str) -> Path:
        """Turn a stored (relative or absolute) path into an absolute one."""
        normalized = normalize_studio_path(stored_path)
        if is_absolute_studio_path(normalized):
            return Path(normalized).resolve()
        return (self.root / normalized).resolve()


def ensure_studio_directories(paths: StudioPaths) -> None:
    """Create every studio directory that does not exist yet."""
    for directory in (
        paths.root,
        paths.root / "images",
        paths.images_originals,
        paths.images_thumbnails,
        paths.images_references,
        paths.brand_assets,
        paths.exports,
        paths.prompts,
        paths.projects,
    ):
        directory.mkdir(parents=True, exist_ok=True)


def is_absolute_studio_path(file_path: str) -> bool:
    """True for POSIX absolute, Windows drive and UNC paths."""
    return (
        os.path.isabs(file_path)
        or bool(_WINDOWS_DRIVE.match(file_path))
        or file_path.startswith("\\\\")
        or file_path.startswith("//")
    )


def normalize_studio_path(file_path: str) -> str:
    """Use forward slashes; strip leading slashes from relative paths only."""
    normalized = file_path.strip().replace("\\", "/")
    if is_absolute_studio_path(normalized):
        return normalized
    return normalized.lstrip("/")


def normalize_relative_path(file_path: str) -> str:
    return normalize_studio_path(file_path).lstrip("/")


def build_relative_path(*segments: str) -> str:
    return normalize_relative_path(str(PurePosixPath(*segments)))


def is_path_inside_root(target: Path | str, root: Path | str) -> bool:
    """True if ``target`` resolves to ``root`` itself or somewhere below it."""
    resolved_target = Path(target).resolve()
    resolved_root = Path(root).resolve()
    return resolved_target == resolved_root or resolved_root in resolved_target.parents
