from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ._internal.errors import invalid_request_error
from .reference.parameters import PRESENCE_PENALTY, REPETITION_PENALTY, TEMPERATURE, TOP_K, TOP_P
from .types import (
    AdapterCategory,
    AdapterOverlay,
    AdapterParameterModification,
    ModelCapabilities,
    ParameterCapability,
    Scalar,
    modification_key,
    utc_now,
)

_CATEGORY_ALIASES: dict[str, AdapterCategory] = {
    "style": "style",
    "aesthetic": "style",
    "character": "character",
    "persona": "character",
    "concept": "concept",
    "subject": "concept",
    "pose": "pose",
    "composition": "pose",
    "other": "other",
}

# category -> ((parameter, multiplier), ...)
_SENSITIVITY_RULES: dict[str, tuple[tuple[str, float], ...]] = {
    "style": ((TEMPERATURE, 1.2), (TOP_P, 0.9)),
    "concept": ((TOP_K, 0.8),),
    "pose": ((PRESENCE_PENALTY, 1.1),),
}

_CHARACTER_PENALTY_STEP = 0.05
_CHARACTER_PENALTY_FLOOR = 1.0
_CHARACTER_PENALTY_FALLBACK = 1.1

_HIGH_ADAPTER_WEIGHT = 1.0
_LOW_RANK = 16
_HIGH_RANK = 64
_HIGH_TOTAL_WEIGHT = 2.0
_TEMPERATURE_STEP_PER_WEIGHT = 0.1
_TEMPERATURE_FLOOR = 0.1


def normalize_category(raw: str | None) -> AdapterCategory:
    if not raw:
        return "other"
    return _CATEGORY_ALIASES.get(raw.strip().lower(), "other")


class _Overlay:
    """Mutable working copy used while folding adapters; never escapes this module."""

    def __init__(self, base: ModelCapabilities) -> None:
        self.parameters: dict[str, ParameterCapability] = dict(base.parameters)
        self.defaults: dict[str, Scalar] = dict(base.recommended_defaults)
        self.warnings: list[str] = list(base.warnings)
        self.modifications: dict[str, AdapterParameterModification] = dict(base.adapter_modifications)

    def scale_sensitivity(self, parameter: str, multiplier: float, adapter: AdapterOverlay) -> None:
        cap = self.parameters.get(parameter)
        if cap is None:
            return
        key = modification_key(parameter, "sensitivity")
        prev = self.modifications.get(key)
        if prev is None:
            self.modifications[key] = AdapterParameterModification(
                parameter=parameter,
                kind="sensitivity",
                sensitivity_multiplier=multiplier,
                description="Parameter sensitivity modified by adapter influence",
                contributing_adapters=(adapter.name,),
            )
        else:
            self.modifications[key] = replace(
                prev,
                sensitivity_multiplier=prev.sensitivity_multiplier * multiplier,
                contributing_adapters=prev.contributing_adapters + (adapter.name,),
            )
        self.parameters[parameter] = replace(cap, note=f"{cap.note} (Modified by adapter: {adapter.name})".lstrip())

    def shift_default(self, parameter: str, value: Scalar, description: str, contributors: tuple[str, ...]) -> None:
        cap = self.parameters.get(parameter)
        if cap is not None:
            value = cap.clamp(value)
        self.defaults[parameter] = value
        self.modifications[modification_key(parameter, "range_shift")] = AdapterParameterModification(
            parameter=parameter,
            kind="range_shift",
            new_default=value,
            description=description,
            contributing_adapters=contributors,
        )

    def lower_repetition_penalty(self, adapter: AdapterOverlay) -> None:
        if REPETITION_PENALTY not in self.parameters:
            return
        current = float(self.defaults.get(REPETITION_PENALTY, _CHARACTER_PENALTY_FALLBACK))
        lowered = max(_CHARACTER_PENALTY_FLOOR, current - adapter.weight * _CHARACTER_PENALTY_STEP)
        prev = self.modifications.get(modification_key(REPETITION_PENALTY, "range_shift"))
        contributors = (prev.contributing_adapters if prev is not None else ()) + (adapter.name,)
        self.shift_default(
            REPETITION_PENALTY,
            round(lowered, 6),
            f"Lowered from {current:.2f} for character adapter",
            contributors,
        )

    def fold(self, adapter: AdapterOverlay) -> None:
        logger.debug("applying adapter {} (category={}, weight={:.2f})", adapter.name, adapter.category, adapter.weight)
        for parameter, multiplier in _SENSITIVITY_RULES.get(adapter.category, ()):
            self.scale_sensitivity(parameter, multiplier, adapter)
        if adapter.category == "character":
            self.lower_repetition_penalty(adapter)

        if adapter.weight > _HIGH_ADAPTER_WEIGHT:
            self.warnings.append(
                f"Adapter '{adapter.name}' has high weight ({adapter.weight:.2f}) - consider reducing temperature"
            )
        if adapter.rank < _LOW_RANK:
            self.warnings.append(
                f"Adapter '{adapter.name}' has low rank ({adapter.rank}) - may have limited expressiveness"
            )
        elif adapter.rank > _HIGH_RANK:
            self.warnings.append(f"Adapter '{adapter.name}' has high rank ({adapter.rank}) - may cause overfitting")


def apply_overlays(base: ModelCapabilities, adapters: Iterable[AdapterOverlay]) -> ModelCapabilities:
    """
    Derive a snapshot with `adapters` applied; `base` is left untouched.

    Enabled adapters are folded in list order. Sensitivity multipliers for the
    same parameter compose by sequential multiplication in that order.
    `base` must be an un-overlaid snapshot; overlays never stack on a derived one.
    """
    if base.adapters or base.adapter_modifications:
        raise invalid_request_error(
            f"capabilities for {base.model_id} already carry adapter overlays; apply adapters to the cached snapshot"
        )
    adapters = tuple(adapters)
    work = _Overlay(base)
    enabled = [a for a in adapters if a.enabled]
    for adapter in enabled:
        work.fold(adapter)

    if enabled:
        total = sum(a.weight for a in enabled)
        work.warnings.append(f"Model has {len(enabled)} active adapter(s) with total weight {total:.2f}")
        if total > _HIGH_TOTAL_WEIGHT:
            work.warnings.append("High combined adapter weight may cause instability or overtraining artifacts")
            current = work.defaults.get(TEMPERATURE)
            if current is None:
                cap = work.parameters.get(TEMPERATURE)
                current = cap.default if cap is not None else None
            if current is not None:
                lowered = max(_TEMPERATURE_FLOOR, float(current) - total * _TEMPERATURE_STEP_PER_WEIGHT)
                work.shift_default(
                    TEMPERATURE,
                    round(lowered, 6),
                    f"Reduced from {float(current):.2f} due to adapter influence",
                    tuple(a.name for a in enabled),
                )

    logger.debug("{}: {} adapter modification(s) applied", base.model_id, len(work.modifications))
    return replace(
        base,
        parameters=work.parameters,
        recommended_defaults=work.defaults,
        warnings=tuple(work.warnings),
        adapters=adapters,
        adapter_modifications=work.modifications,
    )


class AdapterRecord(BaseModel):
    """
    Loosely-typed adapter description as produced by adapter catalogs.

    Accepts both snake_case keys and the PascalCase keys of catalog exports
    (`LoRAType`, `RecommendedWeight`, ...).
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default="", validation_alias=AliasChoices("id", "Id"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "Name"))
    file_path: str = Field(default="", validation_alias=AliasChoices("file_path", "FilePath", "path"))
    category: AdapterCategory = Field(
        default="other",
        validation_alias=AliasChoices("category", "type", "lora_type", "LoRAType", "AdapterType"),
    )
    weight: float = Field(
        default=0.8,
        allow_inf_nan=False,
        validation_alias=AliasChoices("weight", "recommended_weight", "RecommendedWeight", "Weight"),
    )
    enabled: bool = Field(default=True, validation_alias=AliasChoices("enabled", "IsEnabled"))
    rank: int = Field(default=16, ge=1, validation_alias=AliasChoices("rank", "Rank"))
    alpha: int = Field(default=16, ge=1, validation_alias=AliasChoices("alpha", "Alpha"))
    target_modules: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("target_modules", "TargetModules")
    )
    base_model: str = Field(default="", validation_alias=AliasChoices("base_model", "BaseModel"))
    description: str = Field(default="", validation_alias=AliasChoices("description", "Description"))
    order: int = Field(default=0, validation_alias=AliasChoices("order", "Order"))

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return normalize_category(value)
        return value

    @field_validator("target_modules", mode="before")
    @classmethod
    def _target_modules(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


def _record_data(record: Any) -> dict[str, Any]:
    if isinstance(record, AdapterRecord):
        return record.model_dump()
    if isinstance(record, Mapping):
        return dict(record)
    raise invalid_request_error(f"adapter record must be a mapping, got {type(record).__name__}")


def adapter_from_record(record: Any) -> AdapterOverlay:
    """
    Build an `AdapterOverlay` from a catalog record.

    Invalid fields are dropped and take their defaults (id/name fall back to
    each other, then to the file stem); a warning is logged but ingestion never
    fails on field content.
    """
    data = _record_data(record)
    try:
        parsed = AdapterRecord.model_validate(data)
    except ValidationError as e:
        bad = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        logger.warning("adapter metadata incomplete, using defaults for: {}", ", ".join(bad) or "<record>")
        for key in bad:
            data.pop(key, None)
        try:
            parsed = AdapterRecord.model_validate(data)
        except ValidationError:
            parsed = AdapterRecord()

    name = parsed.name or parsed.id or Path(parsed.file_path).stem
    adapter_id = parsed.id or name or parsed.file_path
    if not name:
        logger.warning("adapter metadata incomplete: record has no id, name or file path")
        name = adapter_id = "adapter"
    return AdapterOverlay(
        id=adapter_id,
        name=name,
        file_path=parsed.file_path,
        category=parsed.category,
        weight=parsed.weight,
        enabled=parsed.enabled,
        rank=parsed.rank,
        alpha=parsed.alpha,
        target_modules=tuple(parsed.target_modules),
        base_model=parsed.base_model,
        description=parsed.description,
        applied_at=utc_now(),
        order=parsed.order,
    )


def adapters_from_records(records: Iterable[Any]) -> list[AdapterOverlay]:
    return [adapter_from_record(r) for r in records]


def load_adapters_file(path: str | Path) -> list[AdapterOverlay]:
    """Read adapters from a JSON list or an object with an `adapters` list."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise invalid_request_error(f"cannot read adapters file: {p}: {e}") from e
    except ValueError as e:
        raise invalid_request_error(f"adapters file is not valid json: {p}") from e
    if isinstance(data, dict):
        data = data.get("adapters")
    if not isinstance(data, list):
        raise invalid_request_error(f"adapters file must hold a list of adapters: {p}")
    return adapters_from_records(data)
