from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from loguru import logger

from ._internal.model_rules import is_low_precision
from .reference.parameters import EXPERIMENTAL_PARAMETERS, MIROSTAT_MODE, TEMPERATURE
from .types import ModelCapabilities, ParameterDependency, Scalar

_SMALL_MODEL_PARAMS = 7_000_000_000
_LOW_PRECISION_TEMPERATURE_LIMIT = 1.2

MIROSTAT_HIDES_TEMPERATURE = "Temperature is ignored when Mirostat is enabled"
LOW_PRECISION_TEMPERATURE_WARNING = "High temperature destabilizes low-precision (Q4) quantization"
SMALL_MODEL_NOTE = "May not be effective on smaller models"


def build_dependencies(caps: ModelCapabilities) -> ModelCapabilities:
    """Attach dependency rules derived from the catalog and model metadata."""
    params = dict(caps.parameters)
    deps = list(caps.dependencies)

    if MIROSTAT_MODE in params and TEMPERATURE in params:
        deps.append(
            ParameterDependency(
                trigger=MIROSTAT_MODE,
                comparison="gt",
                threshold=0,
                affected=TEMPERATURE,
                action="hide",
                warning=MIROSTAT_HIDES_TEMPERATURE,
            )
        )

    if TEMPERATURE in params and is_low_precision(caps.quantization):
        deps.append(
            ParameterDependency(
                trigger=TEMPERATURE,
                comparison="gt",
                threshold=_LOW_PRECISION_TEMPERATURE_LIMIT,
                affected=TEMPERATURE,
                action="warn",
                warning=LOW_PRECISION_TEMPERATURE_WARNING,
            )
        )

    # Unknown size (0) is not treated as small.
    if 0 < caps.parameter_count < _SMALL_MODEL_PARAMS:
        for name in EXPERIMENTAL_PARAMETERS:
            cap = params.get(name)
            if cap is None:
                continue
            params[name] = replace(cap, is_recommended=False, note=SMALL_MODEL_NOTE)
            logger.debug("{}: {} marked not recommended for small model", caps.model_id, name)

    return replace(caps, parameters=params, dependencies=tuple(deps))


@dataclass(frozen=True, slots=True)
class EffectiveView:
    """What a consumer should show for a concrete assignment of values."""

    visible: tuple[str, ...] = ()
    hidden: frozenset[str] = frozenset()
    warnings: tuple[str, ...] = ()
    forced: dict[str, Scalar] = field(default_factory=dict)


def evaluate_dependencies(caps: ModelCapabilities, values: Mapping[str, Scalar] | None = None) -> EffectiveView:
    """
    Evaluate the snapshot's dependency rules against `values`.

    Parameters without an explicit value use the recommended default, then the
    catalog default. Rules whose trigger has no value at all do not fire.
    Hidden parameters stay in `caps.parameters`; only the view changes.
    """
    values = values or {}
    hidden: set[str] = set()
    warnings: list[str] = []
    forced: dict[str, Scalar] = {}

    for dep in caps.dependencies:
        value = values.get(dep.trigger)
        if value is None:
            value = caps.recommended(dep.trigger)
        if value is None or not dep.matches(value):
            continue
        if dep.action == "hide":
            hidden.add(dep.affected)
        elif dep.action == "force" and dep.forced_value is not None:
            forced[dep.affected] = dep.forced_value
        if dep.warning and dep.warning not in warnings:
            warnings.append(dep.warning)

    visible = tuple(name for name in caps.parameters if name not in hidden)
    return EffectiveView(visible=visible, hidden=frozenset(hidden), warnings=tuple(warnings), forced=forced)
