"""
Static rules that read structural facts off a model identifier.

Rules here only look at identifier strings (usually a GGUF file name or path).
Nothing in this module talks to a runner; empirical checks live in `probe.py`.
"""

from __future__ import annotations

import re
from pathlib import PurePath
from typing import Final

from ..types import ModelMetadata, SizeClass


def _norm(model_id: str) -> str:
    return model_id.lower().strip()


def model_name_from_id(model_id: str) -> str:
    """File stem for path-like identifiers, the identifier itself otherwise."""
    raw = model_id.strip()
    if not raw:
        return ""
    name = PurePath(raw.replace("\\", "/")).name
    if "." in name:
        stem, _, suffix = name.rpartition(".")
        # Only strip real file extensions ("gguf", "bin"), not version dots ("qwen2.5").
        if stem and suffix.isalpha():
            return stem
    return name


# ---- Parameter count ----

_BILLION: Final[int] = 1_000_000_000

# "8b", "0.5b", "70b"; a preceding letter or dot means it is part of another token.
_PARAM_COUNT_RE: Final[re.Pattern[str]] = re.compile(r"(?<![a-z0-9.])(\d+(?:\.\d+)?)b(?![a-z0-9])")
# Mixture-of-experts form: "8x7b" → 8 experts of 7B each.
_MOE_PARAM_COUNT_RE: Final[re.Pattern[str]] = re.compile(r"(?<![a-z0-9.])(\d+)x(\d+(?:\.\d+)?)b(?![a-z0-9])")

_SIZE_THRESHOLDS_B: Final[tuple[tuple[float, SizeClass], ...]] = (
    (1, "basic"),
    (7, "standard"),
    (30, "advanced"),
)


def parse_parameter_count(model_id: str) -> int:
    mid_l = _norm(model_id)
    moe = _MOE_PARAM_COUNT_RE.search(mid_l)
    if moe is not None:
        return int(int(moe.group(1)) * float(moe.group(2)) * _BILLION)
    m = _PARAM_COUNT_RE.search(mid_l)
    if m is None:
        return 0
    return int(round(float(m.group(1)) * _BILLION))


def size_class_for(parameter_count: int) -> SizeClass:
    if parameter_count <= 0:
        return "standard"
    billions = parameter_count / _BILLION
    for limit, size_class in _SIZE_THRESHOLDS_B:
        if billions < limit:
            return size_class
    return "experimental"


# ---- Context length ----

DEFAULT_CONTEXT_LENGTH: Final[int] = 2048

_CONTEXT_RE: Final[re.Pattern[str]] = re.compile(r"(?<![a-z0-9])(\d+)k(?![a-z0-9])")


def detect_context_length(model_id: str) -> int:
    m = _CONTEXT_RE.search(_norm(model_id))
    if m is None:
        return DEFAULT_CONTEXT_LENGTH
    value = int(m.group(1)) * 1024
    return value if value > 0 else DEFAULT_CONTEXT_LENGTH


# ---- Quantization ----

UNKNOWN_QUANTIZATION: Final[str] = "Unknown"
LOW_PRECISION_PREFIX: Final[str] = "Q4"

# Longest/most specific first: "bf16" contains "f16".
_QUANT_MARKERS: Final[tuple[str, ...]] = (
    "q4_k_m",
    "q4_k_s",
    "q4_0",
    "q5_k_m",
    "q5_k_s",
    "q6_k",
    "q8_0",
    "bf16",
    "f16",
    "f32",
)


def detect_quantization(model_id: str) -> str:
    mid_l = _norm(model_id)
    for marker in _QUANT_MARKERS:
        if marker in mid_l:
            return marker.upper()
    return UNKNOWN_QUANTIZATION


def is_low_precision(quantization: str) -> bool:
    return quantization.upper().startswith(LOW_PRECISION_PREFIX)


# ---- Model family ----

UNKNOWN_FAMILY: Final[str] = "unknown"

_FAMILY_MARKERS: Final[tuple[tuple[str, str], ...]] = (
    ("qwen", "qwen"),
    ("codellama", "llama"),
    ("llama", "llama"),
    ("mistral", "mistral"),
    ("gemma", "gemma"),
    ("phi", "phi"),
)


def detect_family(model_id: str) -> str:
    mid_l = _norm(model_id)
    for marker, family in _FAMILY_MARKERS:
        if marker in mid_l:
            return family
    return UNKNOWN_FAMILY


def extract_metadata(model_id: str) -> ModelMetadata:
    name = model_name_from_id(model_id)
    count = parse_parameter_count(name)
    return ModelMetadata(
        model_id=model_id,
        model_name=name,
        family=detect_family(name),
        size_class=size_class_for(count),
        parameter_count=count,
        context_length=detect_context_length(name),
        quantization=detect_quantization(name),
    )
