from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from loguru import logger

from ._internal.config import get_default_timeout_ms
from ._internal.errors import invalid_request_error
from ._internal.model_rules import extract_metadata
from .cache import CapabilityCache
from .defaults import synthesize_defaults
from .dependencies import build_dependencies
from .modifiability import ModifiabilityValidator
from .overlays import adapter_from_record, apply_overlays
from .probe import CapabilityProbe, check_canceled
from .reference.families import FamilyProfileRegistry
from .runner import Runner
from .types import AdapterOverlay, ModelCapabilities, ModelMetadata

LOW_CONFIDENCE_WARNING = "Runner could not be probed; showing a minimal, conservative parameter set"


def _require_model_id(model_id: Any) -> str:
    if not isinstance(model_id, str) or not model_id.strip():
        raise invalid_request_error("model identifier must be a non-empty string")
    return model_id.strip()


class IntrospectionEngine:
    """
    Builds and caches `ModelCapabilities` for models served by a runner.

    Pipeline per cache miss: metadata, probe, lock check, dependency rules,
    defaults (with the family profile, when one is known). Runner trouble
    degrades the result; only an invalid identifier or cancellation raises.
    """

    def __init__(
        self,
        *,
        registry: FamilyProfileRegistry | None = None,
        cache_ttl_seconds: float | None = None,
        clock: Callable[[], float] | None = None,
        probe: CapabilityProbe | None = None,
        validator: ModifiabilityValidator | None = None,
    ) -> None:
        self.registry = registry if registry is not None else FamilyProfileRegistry.default()
        self.cache = CapabilityCache(ttl_seconds=cache_ttl_seconds, clock=clock or time.monotonic)
        self._probe = probe or CapabilityProbe()
        self._validator = validator or ModifiabilityValidator()

    def metadata(self, model_id: str) -> ModelMetadata:
        return extract_metadata(_require_model_id(model_id))

    def introspect(
        self,
        model_id: str,
        runner: Runner,
        *,
        timeout_ms: int | None = None,
        cancel: threading.Event | None = None,
    ) -> ModelCapabilities:
        model_id = _require_model_id(model_id)
        if timeout_ms is None:
            timeout_ms = get_default_timeout_ms()
        elif timeout_ms < 1:
            raise invalid_request_error("timeout_ms must be >= 1")
        check_canceled(cancel)
        return self.cache.get_or_build(
            model_id,
            lambda: self._build(model_id, runner, timeout_ms=timeout_ms, cancel=cancel),
            cancel=cancel,
        )

    def _build(
        self,
        model_id: str,
        runner: Runner,
        *,
        timeout_ms: int,
        cancel: threading.Event | None,
    ) -> ModelCapabilities:
        started = time.perf_counter()
        meta = extract_metadata(model_id)
        logger.info(
            "introspecting {} (family={}, size={}, quantization={})",
            model_id,
            meta.family,
            meta.size_class,
            meta.quantization,
        )

        probed = self._probe.run(meta, runner, timeout_ms=timeout_ms, cancel=cancel)
        caps = ModelCapabilities(
            model_id=model_id,
            family=meta.family,
            size_class=meta.size_class,
            parameter_count=meta.parameter_count,
            context_length=meta.context_length,
            quantization=meta.quantization,
            parameters=dict(probed.parameters),
            unsupported=probed.unsupported,
            warnings=(LOW_CONFIDENCE_WARNING,) if probed.low_confidence else (),
            low_confidence=probed.low_confidence,
        )
        if not probed.low_confidence:
            caps = self._validator.validate(caps, runner, timeout_ms=timeout_ms, cancel=cancel)
        caps = build_dependencies(caps)
        caps = synthesize_defaults(caps, self.registry.get(meta.family))

        logger.info(
            "introspected {} in {:.2f}s: {} parameter(s), {} unsupported, {} probe call(s){}",
            model_id,
            time.perf_counter() - started,
            len(caps.parameters),
            len(caps.unsupported),
            probed.calls,
            " (low confidence)" if caps.low_confidence else "",
        )
        return caps

    def apply_overlays(
        self,
        caps: ModelCapabilities,
        adapters: Iterable[AdapterOverlay | Mapping[str, Any]],
    ) -> ModelCapabilities:
        """Pure; `adapters` may mix `AdapterOverlay` values and raw catalog records."""
        overlays = [a if isinstance(a, AdapterOverlay) else adapter_from_record(a) for a in adapters]
        return apply_overlays(caps, overlays)

    def invalidate(self, model_id: str) -> bool:
        return self.cache.invalidate(_require_model_id(model_id))
