from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from ._internal.errors import IntrospectError, canceled_error, probe_unreachable_error
from .reference.parameters import ADVANCED_PARAMETERS, BASELINE_OVERRIDES, ProbedParameter
from .reference.parameters import core_parameters, fallback_parameters
from .runner import Runner
from .types import ModelMetadata, ParameterCapability, ProbeRequest

_BASELINE_PROMPT = "Hi"
_TRIAL_PROMPT = "Test"


@dataclass(frozen=True, slots=True)
class ProbeResult:
    parameters: dict[str, ParameterCapability] = field(default_factory=dict)
    unsupported: frozenset[str] = frozenset()
    low_confidence: bool = False
    calls: int = 0


def check_canceled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise canceled_error()


def submit_trial(
    runner: Runner,
    request: ProbeRequest,
    *,
    timeout_ms: int | None,
    cancel: threading.Event | None,
) -> str:
    """
    One runner call, with cancellation checked first.

    Anything the runner raises that is not an `IntrospectError` is treated as
    the runner being unusable.
    """
    check_canceled(cancel)
    try:
        return runner.submit(request, timeout_ms=timeout_ms)
    except IntrospectError:
        raise
    except Exception as e:  # noqa: BLE001
        raise probe_unreachable_error(f"runner failed: {type(e).__name__}: {e}", retryable=False) from e


def _fallback(calls: int) -> ProbeResult:
    return ProbeResult(
        parameters={cap.name: cap for cap in fallback_parameters()},
        unsupported=frozenset(),
        low_confidence=True,
        calls=calls,
    )


class CapabilityProbe:
    """
    Discovers which sampling parameters a runner accepts for a model.

    A baseline trial carries the core knobs. Each advanced parameter then gets
    exactly one isolated trial: acceptance registers it, a `ParameterRejected`
    error marks it unsupported. If the runner cannot be reached at any point the
    probe returns the minimal catalog flagged as low confidence instead of a
    partial one.
    """

    def __init__(self, advanced: Sequence[ProbedParameter] = ADVANCED_PARAMETERS) -> None:
        self._advanced = tuple(advanced)

    def run(
        self,
        metadata: ModelMetadata,
        runner: Runner,
        *,
        timeout_ms: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ProbeResult:
        model = metadata.model_name
        calls = 1
        try:
            submit_trial(
                runner,
                ProbeRequest.from_prompt(model, _BASELINE_PROMPT, overrides=BASELINE_OVERRIDES),
                timeout_ms=timeout_ms,
                cancel=cancel,
            )
        except IntrospectError as e:
            if e.info.type == "Canceled":
                raise
            logger.warning(
                "baseline trial failed for {} ({}: {}); using minimal catalog",
                metadata.model_id,
                e.info.type,
                e.info.message,
            )
            return _fallback(calls)

        parameters = {cap.name: cap for cap in core_parameters(metadata.context_length)}
        unsupported: set[str] = set()

        for probed in self._advanced:
            calls += 1
            request = ProbeRequest.from_prompt(model, _TRIAL_PROMPT, overrides=probed.apply_trial(BASELINE_OVERRIDES))
            try:
                submit_trial(runner, request, timeout_ms=timeout_ms, cancel=cancel)
            except IntrospectError as e:
                if e.is_rejection:
                    logger.debug("{}: {} rejected: {}", model, probed.name, e.info.message)
                    unsupported.add(probed.name)
                    continue
                if e.info.type == "Canceled":
                    raise
                logger.warning(
                    "trial for {} failed on {} ({}: {}); using minimal catalog",
                    probed.name,
                    metadata.model_id,
                    e.info.type,
                    e.info.message,
                )
                return _fallback(calls)
            logger.debug("{}: {} accepted", model, probed.name)
            parameters[probed.name] = probed.capability

        return ProbeResult(
            parameters=parameters,
            unsupported=frozenset(unsupported),
            low_confidence=False,
            calls=calls,
        )
