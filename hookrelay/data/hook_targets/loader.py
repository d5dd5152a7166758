"""YAML loader for hook target definitions with caching and validation."""

import logging
from collections.abc import Iterable
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from hookrelay.data.hook_targets.models import HookTarget, HookTargetsFile
from hookrelay.exceptions import TargetCatalogError

logger = logging.getLogger(__name__)

# Bundled definitions
DEFINITIONS_PATH = Path(__file__).parent / "definitions"


def _load_yaml_file(file_path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Raises:
        TargetCatalogError: If the file cannot be read or parsed
    """
    try:
        with open(file_path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise TargetCatalogError(f"Definition file not found: {file_path}")
    except yaml.YAMLError as e:
        raise TargetCatalogError(f"Invalid YAML in {file_path}: {e}")


def _validate_targets(data: dict[str, Any], file_path: Path) -> list[HookTarget]:
    """Validate hook target definitions from parsed YAML.

    Raises:
        TargetCatalogError: If validation fails
    """
    if not isinstance(data, dict):
        raise TargetCatalogError(f"Expected a mapping at the top of {file_path}")
    try:
        return HookTargetsFile(**data).targets
    except ValidationError as e:
        error_details = []
        for error in e.errors():
            loc = " -> ".join(str(l) for l in error["loc"])
            error_details.append(f"  {loc}: {error['msg']}")
        raise TargetCatalogError(
            f"Validation error in {file_path}:\n" + "\n".join(error_details)
        )


@lru_cache(maxsize=32)
def load_definitions_file(file_path: str) -> tuple[HookTarget, ...]:
    """Load hook targets from a single YAML file (cached)."""
    path = Path(file_path)
    logger.debug(f"Loading hook target definitions from {path}")
    targets = _validate_targets(_load_yaml_file(path), path)
    logger.info(f"Loaded {len(targets)} hook targets from {path.name}")
    return tuple(targets)


def load_all_targets(
    include_builtin: bool = True,
    extra_paths: Iterable[Path] | None = None,
) -> list[HookTarget]:
    """Load the bundled catalog plus any extra YAML files.

    Files that fail to load are logged and skipped. A later definition
    with the same id replaces an earlier one.

    Args:
        include_builtin: Load ``definitions/*.yaml`` shipped with the package
        extra_paths: Additional YAML files, or directories of them

    Returns:
        Hook targets in load order
    """
    files: list[Path] = []
    if include_builtin:
        files.extend(sorted(DEFINITIONS_PATH.glob("*.yaml")))
    for path in extra_paths or ():
        path = Path(path)
        files.extend(sorted(path.glob("*.yaml")) if path.is_dir() else [path])

    by_id: dict[str, HookTarget] = {}
    for yaml_file in files:
        try:
            targets = load_definitions_file(str(yaml_file))
        except TargetCatalogError as e:
            logger.error(f"Failed to load {yaml_file}: {e}")
            continue
        for target in targets:
            if target.id in by_id:
                logger.info(f"Hook target {target.id} overridden by {yaml_file.name}")
            by_id[target.id] = target

    logger.info(f"Loaded {len(by_id)} total hook targets")
    return list(by_id.values())


def reload_targets() -> None:
    """Clear the definitions cache."""
    load_definitions_file.cache_clear()
