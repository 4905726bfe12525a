from __future__ import annotations

import argparse
import json
import sys
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

from ._internal.config import configure_logging, load_env_files
from ._internal.errors import IntrospectError
from ._internal.model_rules import extract_metadata
from .engine import IntrospectionEngine
from .overlays import load_adapters_file
from .reference.families import FamilyProfileRegistry
from .runner import OpenAICompatRunner
from .types import ModelCapabilities, ParameterCapability


def main(argv: list[str] | None = None) -> None:
    load_env_files()
    parser = argparse.ArgumentParser(
        prog="loom-introspect",
        description="Inspect which sampling parameters a served model supports",
    )
    parser.add_argument("--log-level", help="Log level for stderr output (overrides LOOM_INTROSPECT_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    md = sub.add_parser("metadata", help="Parse model identifier (no runner involved)")
    md.add_argument("--model", required=True, help="Model identifier or file path")
    md.add_argument("--json", action="store_true", help="Print JSON")

    fam = sub.add_parser("families", help="List known model family profiles")
    fam.add_argument("--json", action="store_true", help="Print JSON")

    ins = sub.add_parser("inspect", help="Probe a runner and print model capabilities")
    ins.add_argument("--model", required=True, help="Model identifier or file path")
    ins.add_argument(
        "--base-url",
        help="OpenAI-compatible base URL, e.g. http://127.0.0.1:8080/v1 (overrides LOOM_INTROSPECT_RUNNER_BASE_URL)",
    )
    ins.add_argument(
        "--timeout-ms",
        type=int,
        help="Per-request timeout in milliseconds (overrides LOOM_INTROSPECT_TIMEOUT_MS)",
    )
    ins.add_argument("--adapters", help="JSON file with adapters to overlay on the result")
    ins.add_argument("--json", action="store_true", help="Print JSON")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    timeout_ms: int | None = getattr(args, "timeout_ms", None)
    if timeout_ms is not None and timeout_ms < 1:
        raise SystemExit("--timeout-ms must be >= 1")

    try:
        if args.command == "metadata":
            model = str(args.model).strip()
            if not model:
                raise SystemExit("--model must be non-empty")
            meta = extract_metadata(model)
            if args.json:
                _print_json(_metadata_dict(meta))
            else:
                _print_metadata(meta)
            return

        if args.command == "families":
            _print_families(FamilyProfileRegistry.default(), as_json=bool(args.json))
            return

        if args.command == "inspect":
            _run_inspect(args, timeout_ms=timeout_ms)
            return
    except BrokenPipeError:
        return
    except IntrospectError as e:
        retryable = " retryable" if e.info.retryable else ""
        raise SystemExit(f"[FAIL]{retryable}: {e.info.type}: {e.info.message}") from None

    raise SystemExit(f"unknown command: {args.command}")


def _run_inspect(args: argparse.Namespace, *, timeout_ms: int | None) -> None:
    model = str(args.model).strip()
    if not model:
        raise SystemExit("--model must be non-empty")
    adapters = load_adapters_file(args.adapters) if args.adapters else []

    engine = IntrospectionEngine()
    runner = OpenAICompatRunner(args.base_url)
    cancel = threading.Event()
    try:
        caps, elapsed_s = _run_with_spinner(
            lambda: engine.introspect(model, runner, timeout_ms=timeout_ms, cancel=cancel),
            enabled=not args.json,
            label="Probing",
        )
    except KeyboardInterrupt:
        cancel.set()
        raise SystemExit("[FAIL]: Canceled: interrupted") from None

    if adapters:
        caps = engine.apply_overlays(caps, adapters)

    if args.json:
        _print_json(caps.to_dict())
        return
    _print_capabilities(caps)
    print(f"[INFO] done in {elapsed_s:.1f}s", file=sys.stderr)


_T = TypeVar("_T")


def _run_with_spinner(fn: Callable[[], _T], *, enabled: bool, label: str) -> tuple[_T, float]:
    start = time.perf_counter()
    if not enabled or not sys.stderr.isatty():
        out = fn()
        return out, time.perf_counter() - start

    done = threading.Event()
    result: dict[str, _T] = {}
    error: dict[str, BaseException] = {}

    def _worker() -> None:
        try:
            result["value"] = fn()
        except BaseException as e:  # noqa: BLE001
            error["exc"] = e
        finally:
            done.set()

    t = threading.Thread(target=_worker, name="loom-introspect-wait", daemon=True)
    t.start()

    frames = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
    i = 0
    try:
        while not done.wait(0.1):
            elapsed = time.perf_counter() - start
            sys.stderr.write(f"\r{frames[i % len(frames)]} {label}... {elapsed:5.1f}s")
            sys.stderr.flush()
            i += 1
    finally:
        sys.stderr.write("\r" + (" " * 64) + "\r")
        sys.stderr.flush()

    t.join()
    exc = error.get("exc")
    if exc is not None:
        raise exc
    if "value" not in result:
        raise RuntimeError("missing result value")
    return result["value"], time.perf_counter() - start


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True))


def _metadata_dict(meta) -> dict[str, Any]:
    return {
        "model_id": meta.model_id,
        "model_name": meta.model_name,
        "family": meta.family,
        "size_class": meta.size_class,
        "parameter_count": meta.parameter_count,
        "context_length": meta.context_length,
        "quantization": meta.quantization,
    }


def _format_count(count: int) -> str:
    if count <= 0:
        return "unknown"
    return f"{count / 1_000_000_000:.1f}B"


def _print_metadata(meta) -> None:
    print(f"model:        {meta.model_name}")
    print(f"family:       {meta.family}")
    print(f"size:         {meta.size_class} ({_format_count(meta.parameter_count)})")
    print(f"context:      {meta.context_length}")
    print(f"quantization: {meta.quantization}")


def _print_families(registry: FamilyProfileRegistry, *, as_json: bool) -> None:
    rows = []
    for family in registry.families():
        p = registry.get(family)
        if p is None:
            continue
        rows.append(
            {
                "family": p.family,
                "default_temperature": p.default_temperature,
                "default_top_p": p.default_top_p,
                "preferred": sorted(p.preferred),
                "excellent": sorted(p.excellent),
                "problematic": sorted(p.problematic),
                "special_behaviors": list(p.special_behaviors),
            }
        )
    if as_json:
        _print_json(rows)
        return
    for row in rows:
        print(f"{row['family']:10} temperature={row['default_temperature']:<5} top_p={row['default_top_p']}")


def _format_range(cap: ParameterCapability) -> str:
    if cap.allowed_values is not None:
        return "{" + ",".join(str(v) for v in cap.allowed_values) + "}"
    if cap.type == "boolean":
        return "{true,false}"
    return f"[{cap.min_value}, {cap.max_value}]"


def _print_capabilities(caps: ModelCapabilities) -> None:
    confidence = " (low confidence)" if caps.low_confidence else ""
    print(f"== {caps.model_id}{confidence} ==")
    print(
        f"family={caps.family} size={caps.size_class} params={_format_count(caps.parameter_count)}"
        f" context={caps.context_length} quantization={caps.quantization}"
    )
    for name, cap in caps.parameters.items():
        flags = []
        if not cap.is_recommended:
            flags.append("not-recommended")
        if cap.is_experimental:
            flags.append("experimental")
        sens = caps.sensitivity_multiplier(name)
        if sens != 1.0:
            flags.append(f"sensitivity x{sens:.2f}")
        line = f"  {name:20} {cap.type:8} {_format_range(cap):18} default={caps.recommended(name)}"
        if flags:
            line += f"  [{', '.join(flags)}]"
        if cap.note:
            line += f"  {cap.note}"
        print(line)
    if caps.unsupported:
        print(f"unsupported: {', '.join(sorted(caps.unsupported))}")
    for dep in caps.dependencies:
        print(f"rule: {dep.trigger} {dep.comparison} {dep.threshold} => {dep.action} {dep.affected}")
    for warning in caps.warnings:
        print(f"[WARN] {warning}")
