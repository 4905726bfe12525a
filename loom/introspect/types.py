from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

SizeClass = Literal["basic", "standard", "advanced", "experimental"]
ParameterType = Literal["float", "integer", "boolean", "enum"]
Comparison = Literal["eq", "ne", "gt", "lt", "ge", "le"]
DependencyAction = Literal["hide", "warn", "force"]
AdapterCategory = Literal["style", "character", "concept", "pose", "other"]
ModificationKind = Literal["range_shift", "sensitivity"]

Scalar = float | int | bool

_PARAMETER_TYPES = {"float", "integer", "boolean", "enum"}
_COMPARISONS = {"eq", "ne", "gt", "lt", "ge", "le"}
_DEPENDENCY_ACTIONS = {"hide", "warn", "force"}
_ADAPTER_CATEGORIES = {"style", "character", "concept", "pose", "other"}
_MODIFICATION_KINDS = {"range_shift", "sensitivity"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True, slots=True)
class SamplingOverrides:
    """Sampling knobs sent with a trial request; `None` means "leave to the runner"."""

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    seed: int | None = None
    min_p: float | None = None
    typical_p: float | None = None
    repetition_penalty: float | None = None
    tfs_z: float | None = None
    mirostat_mode: int | None = None
    mirostat_tau: float | None = None
    mirostat_eta: float | None = None

    def as_dict(self) -> dict[str, Scalar]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True, slots=True)
class ProbeRequest:
    model: str
    messages: tuple[ChatMessage, ...]
    overrides: SamplingOverrides = field(default_factory=SamplingOverrides)
    max_output_tokens: int = 1

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("ProbeRequest.messages must be non-empty")
        if self.max_output_tokens < 1:
            raise ValueError("ProbeRequest.max_output_tokens must be >= 1")

    @staticmethod
    def from_prompt(
        model: str,
        prompt: str,
        *,
        overrides: SamplingOverrides | None = None,
        max_output_tokens: int = 1,
    ) -> "ProbeRequest":
        return ProbeRequest(
            model=model,
            messages=(ChatMessage(role="user", content=prompt),),
            overrides=overrides or SamplingOverrides(),
            max_output_tokens=max_output_tokens,
        )


@dataclass(frozen=True, slots=True)
class ModelMetadata:
    """Structural facts read off a model identifier (no runner involved)."""

    model_id: str
    model_name: str
    family: str
    size_class: SizeClass
    parameter_count: int
    context_length: int
    quantization: str

    @property
    def parameter_count_known(self) -> bool:
        return self.parameter_count > 0


@dataclass(frozen=True, slots=True)
class ParameterCapability:
    name: str
    type: ParameterType
    min_value: Scalar | None = None
    max_value: Scalar | None = None
    default: Scalar | None = None
    allowed_values: tuple[Scalar, ...] | None = None
    is_modifiable: bool = True
    is_recommended: bool = True
    is_experimental: bool = False
    note: str = ""
    step: float | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ParameterCapability.name must be non-empty")
        if self.type not in _PARAMETER_TYPES:
            raise ValueError(f"unknown ParameterCapability.type: {self.type}")
        if self.type == "enum":
            if not self.allowed_values:
                raise ValueError(f"enum parameter {self.name} requires allowed_values")
        elif self.type != "boolean":
            if self.min_value is None or self.max_value is None:
                raise ValueError(f"{self.type} parameter {self.name} requires min_value and max_value")
            if self.min_value > self.max_value:
                raise ValueError(f"parameter {self.name}: min_value > max_value")
        if self.default is not None and not self.contains(self.default):
            raise ValueError(f"parameter {self.name}: default {self.default!r} outside declared range")

    def contains(self, value: Scalar) -> bool:
        if self.allowed_values is not None:
            return value in self.allowed_values
        if self.type == "boolean":
            return isinstance(value, bool)
        if self.min_value is not None and value < self.min_value:
            return False
        if self.max_value is not None and value > self.max_value:
            return False
        return True

    def clamp(self, value: Scalar) -> Scalar:
        """Pull `value` into the declared range (nearest allowed value for enums)."""
        if self.allowed_values is not None:
            if value in self.allowed_values:
                return value
            return min(self.allowed_values, key=lambda v: abs(v - value))
        if self.type == "boolean":
            return bool(value)
        if self.min_value is not None and value < self.min_value:
            value = self.min_value
        if self.max_value is not None and value > self.max_value:
            value = self.max_value
        if self.type == "integer":
            return int(value)
        return value


@dataclass(frozen=True, slots=True)
class ParameterDependency:
    trigger: str
    comparison: Comparison
    threshold: Scalar
    affected: str
    action: DependencyAction
    warning: str | None = None
    forced_value: Scalar | None = None

    def __post_init__(self) -> None:
        if self.comparison not in _COMPARISONS:
            raise ValueError(f"unknown ParameterDependency.comparison: {self.comparison}")
        if self.action not in _DEPENDENCY_ACTIONS:
            raise ValueError(f"unknown ParameterDependency.action: {self.action}")
        if self.action == "force" and self.forced_value is None:
            raise ValueError("force dependency requires forced_value")

    def matches(self, value: Scalar) -> bool:
        if self.comparison == "eq":
            return value == self.threshold
        if self.comparison == "ne":
            return value != self.threshold
        if self.comparison == "gt":
            return value > self.threshold
        if self.comparison == "lt":
            return value < self.threshold
        if self.comparison == "ge":
            return value >= self.threshold
        return value <= self.threshold


@dataclass(frozen=True, slots=True)
class FamilyProfile:
    family: str
    default_temperature: float = 0.7
    default_top_p: float = 0.9
    preferred: frozenset[str] = frozenset()
    excellent: frozenset[str] = frozenset()
    problematic: frozenset[str] = frozenset()
    special_behaviors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AdapterOverlay:
    """A LoRA-style adapter applied on top of the base model."""

    id: str
    name: str
    file_path: str = ""
    category: AdapterCategory = "other"
    weight: float = 0.8
    enabled: bool = True
    rank: int = 16
    alpha: int = 16
    target_modules: tuple[str, ...] = ()
    base_model: str = ""
    description: str = ""
    applied_at: datetime = field(default_factory=utc_now)
    order: int = 0

    def __post_init__(self) -> None:
        if self.category not in _ADAPTER_CATEGORIES:
            raise ValueError(f"unknown AdapterOverlay.category: {self.category}")
        if not math.isfinite(self.weight):
            raise ValueError("AdapterOverlay.weight must be finite")


@dataclass(frozen=True, slots=True)
class AdapterParameterModification:
    parameter: str
    kind: ModificationKind
    new_default: Scalar | None = None
    sensitivity_multiplier: float = 1.0
    description: str = ""
    contributing_adapters: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.kind not in _MODIFICATION_KINDS:
            raise ValueError(f"unknown AdapterParameterModification.kind: {self.kind}")


def modification_key(parameter: str, kind: ModificationKind) -> str:
    if kind == "sensitivity":
        return f"{parameter}.sensitivity"
    return parameter


@dataclass(frozen=True, slots=True)
class ModelCapabilities:
    model_id: str
    family: str
    size_class: SizeClass
    parameter_count: int
    context_length: int
    quantization: str
    parameters: dict[str, ParameterCapability] = field(default_factory=dict)
    dependencies: tuple[ParameterDependency, ...] = ()
    recommended_defaults: dict[str, Scalar] = field(default_factory=dict)
    unsupported: frozenset[str] = frozenset()
    warnings: tuple[str, ...] = ()
    detected_at: datetime = field(default_factory=utc_now)
    low_confidence: bool = False
    adapters: tuple[AdapterOverlay, ...] = ()
    adapter_modifications: dict[str, AdapterParameterModification] = field(default_factory=dict)

    def __post_init__(self) -> None:
        overlap = self.unsupported.intersection(self.parameters)
        if overlap:
            raise ValueError(f"parameters both supported and unsupported: {sorted(overlap)}")
        for name, cap in self.parameters.items():
            if name != cap.name:
                raise ValueError(f"parameter key {name!r} does not match capability name {cap.name!r}")

    @property
    def has_active_adapters(self) -> bool:
        return any(a.enabled for a in self.adapters)

    @property
    def total_adapter_weight(self) -> float:
        return sum(a.weight for a in self.adapters if a.enabled)

    def sensitivity_multiplier(self, parameter: str) -> float:
        mod = self.adapter_modifications.get(modification_key(parameter, "sensitivity"))
        return mod.sensitivity_multiplier if mod is not None else 1.0

    def recommended(self, parameter: str) -> Scalar | None:
        if parameter in self.recommended_defaults:
            return self.recommended_defaults[parameter]
        cap = self.parameters.get(parameter)
        return cap.default if cap is not None else None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["unsupported"] = sorted(self.unsupported)
        out["detected_at"] = self.detected_at.isoformat()
        out["warnings"] = list(self.warnings)
        out["dependencies"] = [asdict(d) for d in self.dependencies]
        adapters = []
        for a in self.adapters:
            row = asdict(a)
            row["applied_at"] = a.applied_at.isoformat()
            row["target_modules"] = list(a.target_modules)
            adapters.append(row)
        out["adapters"] = adapters
        for cap in out["parameters"].values():
            if cap["allowed_values"] is not None:
                cap["allowed_values"] = list(cap["allowed_values"])
        for mod in out["adapter_modifications"].values():
            mod["contributing_adapters"] = list(mod["contributing_adapters"])
        return out
