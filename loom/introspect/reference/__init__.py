from __future__ import annotations

from .families import FamilyProfileRegistry, load_bundled_profiles, load_profiles_file, parse_profiles
from .parameters import ADVANCED_PARAMETERS, LOCK_CHECKS, core_parameters, fallback_parameters

__all__ = [
    "ADVANCED_PARAMETERS",
    "FamilyProfileRegistry",
    "LOCK_CHECKS",
    "core_parameters",
    "fallback_parameters",
    "load_bundled_profiles",
    "load_profiles_file",
    "parse_profiles",
]
