"""Hook target catalog: which entry points to intercept and how to read them."""

from hookrelay.data.hook_targets.loader import (
    DEFINITIONS_PATH,
    load_all_targets,
    load_definitions_file,
    reload_targets,
)
from hookrelay.data.hook_targets.models import HookTarget, HookTargetsFile

__all__ = [
    "DEFINITIONS_PATH",
    "HookTarget",
    "HookTargetsFile",
    "load_all_targets",
    "load_definitions_file",
    "reload_targets",
]
