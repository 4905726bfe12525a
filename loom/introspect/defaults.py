from __future__ import annotations

from dataclasses import replace

from loguru import logger

from ._internal.model_rules import is_low_precision
from .reference.parameters import MAX_OUTPUT_TOKENS, TEMPERATURE, TOP_P
from .types import FamilyProfile, ModelCapabilities, ParameterCapability, Scalar

_LARGE_MODEL_PARAMS = 30_000_000_000
_SMALL_MODEL_PARAMS = 3_000_000_000

_LARGE_MODEL_TEMPERATURE = 0.6
_LARGE_MODEL_TOP_P = 0.85
_SMALL_MODEL_TEMPERATURE = 0.8
_SMALL_MODEL_TOP_P = 0.95

_LOW_PRECISION_TEMPERATURE_BUMP = 0.1
_LOW_PRECISION_TEMPERATURE_CAP = 1.2

_MAX_OUTPUT_TOKENS_CAP = 2048


def _mark_profile(params: dict[str, ParameterCapability], profile: FamilyProfile) -> None:
    for name in sorted(profile.problematic):
        cap = params.get(name)
        if cap is not None:
            params[name] = replace(cap, is_recommended=False, note=f"Not recommended for {profile.family} models")
    for name in sorted(profile.excellent):
        cap = params.get(name)
        if cap is not None:
            params[name] = replace(cap, is_recommended=True, note=f"Works excellently with {profile.family} models")


def synthesize_defaults(caps: ModelCapabilities, profile: FamilyProfile | None = None) -> ModelCapabilities:
    """
    Compute recommended defaults for every catalog parameter.

    Order: catalog default, family profile, size shift, Q4 temperature bump,
    output-token budget. Each value is clamped into its parameter's range and
    only parameters present in the catalog receive a default.
    """
    params = dict(caps.parameters)
    warnings = list(caps.warnings)
    wanted: dict[str, Scalar] = {name: cap.default for name, cap in params.items() if cap.default is not None}

    if profile is not None:
        wanted[TEMPERATURE] = profile.default_temperature
        wanted[TOP_P] = profile.default_top_p
        _mark_profile(params, profile)
        for behavior in profile.special_behaviors:
            warnings.append(f"{profile.family}: {behavior}")

    count = caps.parameter_count
    if count > _LARGE_MODEL_PARAMS:
        wanted[TEMPERATURE] = _LARGE_MODEL_TEMPERATURE
        wanted[TOP_P] = _LARGE_MODEL_TOP_P
    elif 0 < count < _SMALL_MODEL_PARAMS:
        wanted[TEMPERATURE] = _SMALL_MODEL_TEMPERATURE
        wanted[TOP_P] = _SMALL_MODEL_TOP_P

    if is_low_precision(caps.quantization) and TEMPERATURE in wanted:
        bumped = round(float(wanted[TEMPERATURE]) + _LOW_PRECISION_TEMPERATURE_BUMP, 4)
        wanted[TEMPERATURE] = min(bumped, _LOW_PRECISION_TEMPERATURE_CAP)

    wanted[MAX_OUTPUT_TOKENS] = min(caps.context_length // 4, _MAX_OUTPUT_TOKENS_CAP)

    defaults: dict[str, Scalar] = {}
    for name, value in wanted.items():
        cap = params.get(name)
        if cap is None:
            continue
        clamped = cap.clamp(value)
        if clamped != value:
            logger.debug("{}: default {}={} clamped to {}", caps.model_id, name, value, clamped)
        defaults[name] = clamped

    return replace(caps, parameters=params, recommended_defaults=defaults, warnings=tuple(warnings))
