from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import replace

from loguru import logger

from ._internal.errors import IntrospectError
from ._internal.model_rules import model_name_from_id
from .probe import submit_trial
from .reference.parameters import BASELINE_OVERRIDES, LOCK_CHECKS, LockCheck
from .runner import Runner
from .types import ModelCapabilities, ProbeRequest

_LOCK_PROMPT = "Say 'test' and nothing else."
_LOCK_MAX_OUTPUT_TOKENS = 10


class ModifiabilityValidator:
    """
    Detects parameters the runner accepts but silently ignores.

    Two trials differ only in one parameter's value; byte-identical output means
    the parameter is treated as locked. The comparison is a heuristic: a
    deterministic runner with a fixed seed is assumed.
    """

    def __init__(self, checks: Sequence[LockCheck] = LOCK_CHECKS) -> None:
        self._checks = tuple(checks)

    def validate(
        self,
        caps: ModelCapabilities,
        runner: Runner,
        *,
        timeout_ms: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ModelCapabilities:
        parameters = dict(caps.parameters)
        unsupported = set(caps.unsupported)
        warnings = list(caps.warnings)

        model = model_name_from_id(caps.model_id)
        for check in self._checks:
            if check.name not in parameters:
                continue
            try:
                low = submit_trial(
                    runner,
                    ProbeRequest.from_prompt(
                        model,
                        _LOCK_PROMPT,
                        overrides=check.low(BASELINE_OVERRIDES),
                        max_output_tokens=_LOCK_MAX_OUTPUT_TOKENS,
                    ),
                    timeout_ms=timeout_ms,
                    cancel=cancel,
                )
                high = submit_trial(
                    runner,
                    ProbeRequest.from_prompt(
                        model,
                        _LOCK_PROMPT,
                        overrides=check.high(BASELINE_OVERRIDES),
                        max_output_tokens=_LOCK_MAX_OUTPUT_TOKENS,
                    ),
                    timeout_ms=timeout_ms,
                    cancel=cancel,
                )
            except IntrospectError as e:
                if e.info.type == "Canceled":
                    raise
                logger.debug("skipping lock check for {}: {}: {}", check.name, e.info.type, e.info.message)
                continue

            if low != high:
                continue
            logger.warning("{} appears locked for {}", check.name, caps.model_id)
            parameters.pop(check.name)
            unsupported.add(check.name)
            warnings.append(f"Parameter '{check.name}' appears to be locked by the runner; changes have no effect")

        return replace(
            caps,
            parameters=parameters,
            unsupported=frozenset(unsupported),
            warnings=tuple(warnings),
        )
