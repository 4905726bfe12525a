from __future__ import annotations

# Declarative parameter tables used by the probe and the rule builders.
#
# Each probed parameter pairs a catalog entry (type, range, default) with a typed
# setter that places a trial value on `SamplingOverrides`. Adding a parameter
# means adding a row here and a field on `SamplingOverrides`; no lookup by name.

from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Final

from ..types import ParameterCapability, SamplingOverrides

TEMPERATURE: Final[str] = "temperature"
TOP_P: Final[str] = "top_p"
TOP_K: Final[str] = "top_k"
MAX_OUTPUT_TOKENS: Final[str] = "max_output_tokens"
FREQUENCY_PENALTY: Final[str] = "frequency_penalty"
PRESENCE_PENALTY: Final[str] = "presence_penalty"
SEED: Final[str] = "seed"
MIN_P: Final[str] = "min_p"
TYPICAL_P: Final[str] = "typical_p"
REPETITION_PENALTY: Final[str] = "repetition_penalty"
TFS_Z: Final[str] = "tfs_z"
MIROSTAT_MODE: Final[str] = "mirostat_mode"
MIROSTAT_TAU: Final[str] = "mirostat_tau"
MIROSTAT_ETA: Final[str] = "mirostat_eta"

# Sampling tricks that rarely pay off on small models (not all are probed).
EXPERIMENTAL_PARAMETERS: Final[tuple[str, ...]] = (TFS_Z, "eta_cutoff", "epsilon_cutoff", "dry_multiplier")

_INT32_MAX: Final[int] = 2**31 - 1


Setter = Callable[[SamplingOverrides], SamplingOverrides]


@dataclass(frozen=True, slots=True)
class ProbedParameter:
    capability: ParameterCapability
    apply_trial: Setter

    @property
    def name(self) -> str:
        return self.capability.name


BASELINE_OVERRIDES: Final[SamplingOverrides] = SamplingOverrides(
    temperature=0.7,
    top_p=0.9,
    top_k=40,
    frequency_penalty=0.1,
    presence_penalty=0.1,
    seed=12345,
)


def core_parameters(context_length: int) -> list[ParameterCapability]:
    """Catalog registered once the baseline trial succeeds."""
    max_tokens = max(1, context_length)
    return [
        ParameterCapability(name=TEMPERATURE, type="float", min_value=0.0, max_value=2.0, default=0.7, step=0.05),
        ParameterCapability(name=TOP_P, type="float", min_value=0.0, max_value=1.0, default=0.9, step=0.01),
        ParameterCapability(name=TOP_K, type="integer", min_value=1, max_value=200, default=40, step=1),
        ParameterCapability(
            name=MAX_OUTPUT_TOKENS,
            type="integer",
            min_value=1,
            max_value=max_tokens,
            default=min(1024, max_tokens),
            step=1,
        ),
        ParameterCapability(name=FREQUENCY_PENALTY, type="float", min_value=-2.0, max_value=2.0, default=0.0, step=0.1),
        ParameterCapability(name=PRESENCE_PENALTY, type="float", min_value=-2.0, max_value=2.0, default=0.0, step=0.1),
        ParameterCapability(name=SEED, type="integer", min_value=-1, max_value=_INT32_MAX, default=-1, step=1),
    ]


def fallback_parameters() -> list[ParameterCapability]:
    """The two safest parameters, used when the runner cannot be probed."""
    return [
        ParameterCapability(name=TEMPERATURE, type="float", min_value=0.1, max_value=1.5, default=0.7, step=0.05),
        ParameterCapability(name=MAX_OUTPUT_TOKENS, type="integer", min_value=1, max_value=2048, default=1024, step=1),
    ]


ADVANCED_PARAMETERS: Final[tuple[ProbedParameter, ...]] = (
    ProbedParameter(
        capability=ParameterCapability(name=MIN_P, type="float", min_value=0.0, max_value=1.0, default=0.05, step=0.01),
        apply_trial=lambda o: replace(o, min_p=0.05),
    ),
    ProbedParameter(
        capability=ParameterCapability(
            name=TYPICAL_P, type="float", min_value=0.0, max_value=1.0, default=0.95, step=0.01
        ),
        apply_trial=lambda o: replace(o, typical_p=0.95),
    ),
    ProbedParameter(
        capability=ParameterCapability(
            name=REPETITION_PENALTY, type="float", min_value=0.5, max_value=2.0, default=1.1, step=0.05
        ),
        apply_trial=lambda o: replace(o, repetition_penalty=1.1),
    ),
    ProbedParameter(
        capability=ParameterCapability(
            name=TFS_Z, type="float", min_value=0.0, max_value=1.0, default=1.0, is_experimental=True, step=0.01
        ),
        apply_trial=lambda o: replace(o, tfs_z=0.95),
    ),
    ProbedParameter(
        capability=ParameterCapability(name=MIROSTAT_MODE, type="enum", default=0, allowed_values=(0, 1, 2)),
        apply_trial=lambda o: replace(o, mirostat_mode=1),
    ),
    ProbedParameter(
        capability=ParameterCapability(
            name=MIROSTAT_TAU, type="float", min_value=1.0, max_value=10.0, default=5.0, step=0.1
        ),
        apply_trial=lambda o: replace(o, mirostat_tau=5.0),
    ),
    ProbedParameter(
        capability=ParameterCapability(
            name=MIROSTAT_ETA, type="float", min_value=0.01, max_value=1.0, default=0.1, step=0.01
        ),
        apply_trial=lambda o: replace(o, mirostat_eta=0.1),
    ),
)


@dataclass(frozen=True, slots=True)
class LockCheck:
    """Two settings of one parameter that should visibly change the output."""

    name: str
    low: Setter
    high: Setter


LOCK_CHECKS: Final[tuple[LockCheck, ...]] = (
    LockCheck(
        name=TEMPERATURE,
        low=lambda o: replace(o, temperature=0.1),
        high=lambda o: replace(o, temperature=1.5),
    ),
)
