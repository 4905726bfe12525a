from __future__ import annotations

import json
from collections.abc import Mapping
from importlib import resources
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .._internal.config import get_family_profiles_path
from .._internal.errors import invalid_request_error
from ..types import FamilyProfile

_BUNDLED_PROFILES = "family_profiles.json"


class _ProfileRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    default_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    default_top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    preferred: list[str] = Field(default_factory=list)
    excellent: list[str] = Field(default_factory=list)
    problematic: list[str] = Field(default_factory=list)
    special_behaviors: list[str] = Field(default_factory=list)


_PROFILE_TABLE = TypeAdapter(dict[str, _ProfileRecord])


def _to_profile(family: str, record: _ProfileRecord) -> FamilyProfile:
    return FamilyProfile(
        family=family,
        default_temperature=record.default_temperature,
        default_top_p=record.default_top_p,
        preferred=frozenset(record.preferred),
        excellent=frozenset(record.excellent),
        problematic=frozenset(record.problematic),
        special_behaviors=tuple(record.special_behaviors),
    )


def parse_profiles(data: Any) -> dict[str, FamilyProfile]:
    """Validate a `{family: {...}}` table; family keys are normalized to lower case."""
    try:
        table = _PROFILE_TABLE.validate_python(data)
    except ValidationError as e:
        raise invalid_request_error(f"invalid family profile table: {e.error_count()} error(s)") from e
    out: dict[str, FamilyProfile] = {}
    for raw_family, record in table.items():
        family = raw_family.strip().lower()
        if not family:
            continue
        out[family] = _to_profile(family, record)
    return out


def load_bundled_profiles() -> dict[str, FamilyProfile]:
    text = resources.files(__package__).joinpath(_BUNDLED_PROFILES).read_text(encoding="utf-8")
    return parse_profiles(json.loads(text))


def load_profiles_file(path: str | Path) -> dict[str, FamilyProfile]:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise invalid_request_error(f"cannot read family profiles: {p}: {e}") from e
    except ValueError as e:
        raise invalid_request_error(f"family profiles are not valid json: {p}") from e
    return parse_profiles(data)


class FamilyProfileRegistry:
    """
    Read-only lookup of sampling knowledge per model family.

    Unknown families are a normal outcome: `get()` returns `None` and callers
    leave their defaults untouched.
    """

    def __init__(self, profiles: Mapping[str, FamilyProfile] | None = None) -> None:
        self._profiles: dict[str, FamilyProfile] = dict(profiles or {})

    @classmethod
    def default(cls, extra_path: str | Path | None = None) -> "FamilyProfileRegistry":
        """Bundled profiles, extended/overridden by `extra_path` or `FAMILY_PROFILES_PATH`."""
        profiles = load_bundled_profiles()
        path = Path(extra_path) if extra_path is not None else get_family_profiles_path()
        if path is not None:
            extra = load_profiles_file(path)
            logger.debug("loaded {} family profile(s) from {}", len(extra), path)
            profiles.update(extra)
        return cls(profiles)

    def get(self, family: str | None) -> FamilyProfile | None:
        if not family:
            return None
        return self._profiles.get(family.strip().lower())

    def families(self) -> list[str]:
        return sorted(self._profiles)

    def with_profiles(self, profiles: Mapping[str, FamilyProfile]) -> "FamilyProfileRegistry":
        merged = dict(self._profiles)
        merged.update(profiles)
        return FamilyProfileRegistry(merged)

    def __contains__(self, family: object) -> bool:
        return isinstance(family, str) and family.strip().lower() in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)
