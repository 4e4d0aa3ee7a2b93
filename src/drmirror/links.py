from __future__ import annotations

import os
from pathlib import Path, PurePosixPath


def _normalize_target_text(target: str) -> str:
    return PurePosixPath(target.replace("\\", "/")).as_posix()


def _absolute_target(root: Path, relpath: str, target: str) -> Path:
    target_path = Path(target)
    if target_path.is_absolute():
        return Path(os.path.normpath(target_path))
    return Path(os.path.normpath((root / relpath).parent / target_path))


def link_target_key(root: str | Path, relpath: str, target: str) -> str:
    """Comparable form of a link target that is stable across mirrored roots."""
    normalized = _normalize_target_text(target)
    root_path = Path(os.path.normpath(Path(root)))
    abs_target = _absolute_target(root_path, relpath, normalized)
    try:
        rel_to_root = abs_target.relative_to(root_path)
        return f"inroot:{rel_to_root.as_posix()}"
    except ValueError:
        pass
    if Path(normalized).is_absolute():
        return f"abs:{abs_target.as_posix()}"
    return f"rel:{normalized}"


def map_link_target(
    source_root: str | Path,
    destination_root: str | Path,
    relpath: str,
    target: str,
) -> str:
    """Rewrite a link target so a link pointing inside the source tree points
    at the same entry inside the destination tree."""
    normalized = _normalize_target_text(target)
    source_root = Path(os.path.normpath(Path(source_root)))
    destination_root = Path(os.path.normpath(Path(destination_root)))
    abs_target = _absolute_target(source_root, relpath, normalized)
    try:
        rel_to_source = abs_target.relative_to(source_root)
    except ValueError:
        return normalized
    mapped = os.path.relpath(
        destination_root / rel_to_source, (destination_root / relpath).parent
    )
    return PurePosixPath(Path(mapped).as_posix()).as_posix()
