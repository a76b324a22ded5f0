"""Spec discovery and front matter parsing."""

from spec_coordinator.specs.discovery import (
    LoadedSpec,
    discover_spec_files,
    extract_front_matter,
    is_selected,
    load_spec,
    load_specs,
)

__all__ = [
    "LoadedSpec",
    "discover_spec_files",
    "extract_front_matter",
    "is_selected",
    "load_spec",
    "load_specs",
]
