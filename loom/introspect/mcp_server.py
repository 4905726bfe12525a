from __future__ import annotations

import argparse
from typing import Any

from typing_extensions import TypedDict

from ._internal.config import configure_logging, get_mcp_host_port, load_env_files
from ._internal.errors import IntrospectError
from ._internal.model_rules import extract_metadata
from .engine import IntrospectionEngine
from .runner import OpenAICompatRunner, Runner


class ModelMetadataInfo(TypedDict):
    model_id: str
    model_name: str
    family: str
    size_class: str
    parameter_count: int
    context_length: int
    quantization: str


class FamilyProfileInfo(TypedDict):
    family: str
    default_temperature: float
    default_top_p: float
    preferred: list[str]
    excellent: list[str]
    problematic: list[str]
    special_behaviors: list[str]


class FamilyProfilesInfo(TypedDict):
    families: list[FamilyProfileInfo]


def build_server(
    *,
    host: str | None = None,
    port: int | None = None,
    engine: IntrospectionEngine | None = None,
    runner_base_url: str | None = None,
    runner: Runner | None = None,
):
    """
    Build a FastMCP server that exposes:
    - extract_model_metadata: parse a model identifier (no runner call)
    - list_family_profiles: sampling knowledge per model family
    - introspect_model: probe the configured runner and return model capabilities
    - apply_adapter_overlays: introspect, then overlay adapters on the result

    One engine (and therefore one capability cache) is shared by all tool calls.
    """
    try:
        from mcp.server.fastmcp import FastMCP
    except ModuleNotFoundError as e:  # pragma: no cover
        raise SystemExit("missing dependency: install `mcp` to run the MCP server (e.g. `uv sync --extra mcp`)") from e

    from typing import Annotated

    from pydantic import Field

    if host is None or port is None:
        host, port = get_mcp_host_port()
    server = FastMCP(name="LoomIntrospect", host=host, port=port)

    eng = engine or IntrospectionEngine()
    default_runner = runner

    def _runner_for(base_url: str | None) -> Runner:
        if base_url:
            return OpenAICompatRunner(base_url)
        if default_runner is not None:
            return default_runner
        return OpenAICompatRunner(runner_base_url)

    def _introspect(model: str, base_url: str | None, timeout_ms: int | None):
        try:
            return eng.introspect(model, _runner_for(base_url), timeout_ms=timeout_ms)
        except IntrospectError as e:
            raise ValueError(f"{e.info.type}: {e.info.message}") from e

    def extract_model_metadata(model: str) -> ModelMetadataInfo:
        """
        Parse a model identifier (file name or path) into structural facts.

        Returns family, size class, parameter count (0 = unknown), context length
        and quantization. Does not contact the runner.
        """
        if not model.strip():
            raise ValueError("model must be non-empty")
        meta = extract_metadata(model.strip())
        return {
            "model_id": meta.model_id,
            "model_name": meta.model_name,
            "family": meta.family,
            "size_class": meta.size_class,
            "parameter_count": meta.parameter_count,
            "context_length": meta.context_length,
            "quantization": meta.quantization,
        }

    def list_family_profiles() -> FamilyProfilesInfo:
        """List model families with known sampling defaults and parameter advice."""
        rows: list[FamilyProfileInfo] = []
        for family in eng.registry.families():
            p = eng.registry.get(family)
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
        return {"families": rows}

    def introspect_model(model: str, *, base_url: str | None = None, timeout_ms: int | None = None) -> dict[str, Any]:
        """
        Discover which sampling parameters the runner accepts for `model`.

        Returns the capability snapshot: parameters with ranges, recommended
        defaults, dependency rules, unsupported parameters and warnings.
        `low_confidence=true` means the runner could not be probed and only a
        minimal parameter set is reported. Results are cached per model.
        """
        return _introspect(model, base_url, timeout_ms).to_dict()

    def apply_adapter_overlays(
        model: str,
        adapters: list[dict[str, Any]],
        *,
        base_url: str | None = None,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """
        Introspect `model`, then apply LoRA-style adapters in list order.

        Each adapter: {"name", "category" (style/character/concept/pose), "weight",
        "rank", "enabled", ...}. Returns the derived snapshot; the cached snapshot
        is not modified.
        """
        caps = _introspect(model, base_url, timeout_ms)
        try:
            derived = eng.apply_overlays(caps, adapters)
        except IntrospectError as e:
            raise ValueError(f"{e.info.type}: {e.info.message}") from e
        return derived.to_dict()

    extract_model_metadata.__annotations__["model"] = Annotated[
        str,
        Field(
            description="Model identifier or GGUF file path.",
            examples=["llama-3-8b-instruct-q4_k_m-32k.gguf"],
        ),
    ]
    for fn in (introspect_model, apply_adapter_overlays):
        fn.__annotations__["base_url"] = Annotated[
            str | None,
            Field(default=None, description="OpenAI-compatible runner base URL (defaults to server config)."),
        ]
        fn.__annotations__["timeout_ms"] = Annotated[
            int | None,
            Field(default=None, description="Per-request timeout in milliseconds."),
        ]

    server.tool(structured_output=True)(extract_model_metadata)
    server.tool(structured_output=True)(list_family_profiles)
    server.tool(structured_output=True)(introspect_model)
    server.tool(structured_output=True)(apply_adapter_overlays)
    return server


def build_http_app(server: Any) -> Any:
    from starlette.routing import Mount, Route

    app = server.streamable_http_app()
    sse = server.sse_app()
    sse_path = server.settings.sse_path
    message_path = server.settings.message_path.rstrip("/")

    for route in sse.router.routes:
        if isinstance(route, Route) and route.path == sse_path:
            app.router.routes.append(route)
            continue
        if isinstance(route, Mount) and route.path.rstrip("/") == message_path:
            app.router.routes.append(route)
            continue
    return app


def main(argv: list[str] | None = None) -> None:
    load_env_files()

    parser = argparse.ArgumentParser(
        prog="loom-introspect-mcp",
        description="loom-introspect MCP server (Streamable HTTP: /mcp, SSE: /sse)",
    )
    parser.add_argument(
        "--runner-base-url",
        dest="runner_base_url",
        help="OpenAI-compatible runner base URL (overrides LOOM_INTROSPECT_RUNNER_BASE_URL)",
    )
    parser.add_argument("--log-level", help="Log level for stderr output (overrides LOOM_INTROSPECT_LOG_LEVEL)")
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    server_host, server_port = get_mcp_host_port()
    server = build_server(host=server_host, port=server_port, runner_base_url=args.runner_base_url)
    app = build_http_app(server)

    try:
        import uvicorn
    except ModuleNotFoundError as e:  # pragma: no cover
        raise SystemExit("missing dependency: install `uvicorn` to run the MCP server (e.g. `uv sync --extra mcp`)") from e

    uvicorn.run(app, host=server_host, port=server_port, log_level=server.settings.log_level.lower())
