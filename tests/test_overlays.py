import unittest


def _base():  # type: ignore[no-untyped-def]
    from loom.introspect.defaults import synthesize_defaults
    from loom.introspect.reference.parameters import ADVANCED_PARAMETERS, core_parameters
    from loom.introspect.types import ModelCapabilities

    params = {cap.name: cap for cap in core_parameters(4096)}
    for probed in ADVANCED_PARAMETERS:
        params[probed.name] = probed.capability
    caps = ModelCapabilities(
        model_id="llama-3-8b",
        family="llama",
        size_class="advanced",
        parameter_count=8_000_000_000,
        context_length=4096,
        quantization="Q8_0",
        parameters=params,
    )
    return synthesize_defaults(caps)


def _adapter(name: str, category: str, weight: float, **kw):  # type: ignore[no-untyped-def]
    from loom.introspect.types import AdapterOverlay

    return AdapterOverlay(id=name, name=name, category=category, weight=weight, **kw)  # type: ignore[arg-type]


class TestApplyOverlays(unittest.TestCase):
    def test_high_combined_weight_lowers_temperature(self) -> None:
        from loom.introspect.overlays import apply_overlays

        base = _base()
        out = apply_overlays(base, [_adapter("painterly", "style", 0.8), _adapter("hero", "character", 1.4)])

        self.assertAlmostEqual(out.total_adapter_weight, 2.2)
        self.assertTrue(any("High combined adapter weight" in w for w in out.warnings))
        self.assertIn("Model has 2 active adapter(s) with total weight 2.20", out.warnings)
        self.assertAlmostEqual(out.recommended_defaults["temperature"], 0.7 - 0.22)
        mod = out.adapter_modifications["temperature"]
        self.assertEqual(mod.kind, "range_shift")
        self.assertEqual(mod.contributing_adapters, ("painterly", "hero"))
        self.assertEqual(mod.description, "Reduced from 0.70 due to adapter influence")

    def test_temperature_floor(self) -> None:
        from loom.introspect.overlays import apply_overlays

        out = apply_overlays(_base(), [_adapter("a", "other", 5.0), _adapter("b", "other", 4.0)])
        self.assertEqual(out.recommended_defaults["temperature"], 0.1)

    def test_at_threshold_leaves_temperature(self) -> None:
        from loom.introspect.overlays import apply_overlays

        out = apply_overlays(_base(), [_adapter("a", "other", 1.0), _adapter("b", "other", 1.0)])
        self.assertEqual(out.recommended_defaults["temperature"], 0.7)
        self.assertNotIn("temperature", out.adapter_modifications)

    def test_sensitivities_compose_as_product_in_order(self) -> None:
        from loom.introspect.overlays import apply_overlays

        out = apply_overlays(_base(), [_adapter("s1", "style", 0.5), _adapter("s2", "style", 0.5)])

        self.assertAlmostEqual(out.sensitivity_multiplier("temperature"), 1.2 * 1.2)
        self.assertAlmostEqual(out.sensitivity_multiplier("top_p"), 0.9 * 0.9)
        mod = out.adapter_modifications["temperature.sensitivity"]
        self.assertEqual(mod.contributing_adapters, ("s1", "s2"))
        self.assertIn("(Modified by adapter: s2)", out.parameters["temperature"].note)

    def test_concept_and_pose_rules(self) -> None:
        from loom.introspect.overlays import apply_overlays

        out = apply_overlays(_base(), [_adapter("c", "concept", 0.5), _adapter("p", "pose", 0.5)])
        self.assertAlmostEqual(out.sensitivity_multiplier("top_k"), 0.8)
        self.assertAlmostEqual(out.sensitivity_multiplier("presence_penalty"), 1.1)
        self.assertEqual(out.sensitivity_multiplier("temperature"), 1.0)

    def test_character_lowers_repetition_penalty_with_floor(self) -> None:
        from loom.introspect.overlays import apply_overlays

        out = apply_overlays(_base(), [_adapter("hero", "character", 0.8)])
        self.assertAlmostEqual(out.recommended_defaults["repetition_penalty"], 1.1 - 0.04)
        self.assertEqual(out.adapter_modifications["repetition_penalty"].kind, "range_shift")

        floored = apply_overlays(_base(), [_adapter("hero", "character", 4.0)])
        self.assertEqual(floored.recommended_defaults["repetition_penalty"], 1.0)

    def test_base_is_not_mutated(self) -> None:
        from loom.introspect.overlays import apply_overlays

        base = _base()
        before = base.to_dict()
        apply_overlays(base, [_adapter("painterly", "style", 1.5), _adapter("hero", "character", 1.4)])
        self.assertEqual(base.to_dict(), before)
        self.assertEqual(base.adapter_modifications, {})

    def test_disabled_adapters_are_ignored(self) -> None:
        from loom.introspect.overlays import apply_overlays

        base = _base()
        out = apply_overlays(base, [_adapter("off", "style", 3.0, enabled=False)])
        self.assertEqual(out.adapter_modifications, {})
        self.assertEqual(out.warnings, base.warnings)
        self.assertEqual(out.recommended_defaults, base.recommended_defaults)
        self.assertEqual(len(out.adapters), 1)
        self.assertFalse(out.has_active_adapters)

    def test_overlaid_snapshot_is_rejected_as_base(self) -> None:
        from loom.introspect._internal.errors import IntrospectError
        from loom.introspect.overlays import apply_overlays

        base = _base()
        derived = apply_overlays(base, [_adapter("a", "style", 0.5)])
        with self.assertRaises(IntrospectError) as cm:
            apply_overlays(derived, [_adapter("a", "style", 0.5)])
        self.assertEqual(cm.exception.info.type, "InvalidRequestError")

        disabled_only = apply_overlays(base, [_adapter("off", "style", 0.5, enabled=False)])
        with self.assertRaises(IntrospectError):
            apply_overlays(disabled_only, [])

        again = apply_overlays(base, [_adapter("a", "style", 0.5)])
        self.assertAlmostEqual(again.sensitivity_multiplier("temperature"), 1.2)
        self.assertEqual(again.adapter_modifications["temperature.sensitivity"].contributing_adapters, ("a",))
        self.assertEqual(sum("active adapter" in w for w in again.warnings), 1)

    def test_per_adapter_warnings(self) -> None:
        from loom.introspect.overlays import apply_overlays

        out = apply_overlays(
            _base(),
            [
                _adapter("tiny", "other", 0.5, rank=4),
                _adapter("huge", "other", 1.2, rank=128),
            ],
        )
        joined = "\n".join(out.warnings)
        self.assertIn("'tiny' has low rank (4)", joined)
        self.assertIn("'huge' has high rank (128)", joined)
        self.assertIn("'huge' has high weight (1.20)", joined)
        self.assertNotIn("'tiny' has high weight", joined)

    def test_rules_skip_parameters_missing_from_catalog(self) -> None:
        from dataclasses import replace

        from loom.introspect.overlays import apply_overlays

        base = _base()
        params = {k: v for k, v in base.parameters.items() if k not in {"top_k", "repetition_penalty"}}
        defaults = {k: v for k, v in base.recommended_defaults.items() if k in params}
        base = replace(base, parameters=params, recommended_defaults=defaults)

        out = apply_overlays(base, [_adapter("c", "concept", 0.5), _adapter("h", "character", 0.5)])
        self.assertEqual(out.adapter_modifications, {})
        self.assertNotIn("repetition_penalty", out.recommended_defaults)


class TestAdapterRecords(unittest.TestCase):
    def test_catalog_export_keys_and_aliases(self) -> None:
        from loom.introspect.overlays import adapter_from_record

        adapter = adapter_from_record(
            {
                "Id": "lora-1",
                "Name": "Watercolor",
                "FilePath": "/loras/watercolor.safetensors",
                "LoRAType": "Aesthetic",
                "RecommendedWeight": 0.6,
                "Rank": 32,
                "Alpha": 16,
                "TargetModules": ["q_proj", "v_proj"],
                "BaseModel": "llama-3-8b",
                "Description": "soft washes",
            }
        )
        self.assertEqual(adapter.id, "lora-1")
        self.assertEqual(adapter.category, "style")
        self.assertEqual(adapter.weight, 0.6)
        self.assertEqual(adapter.rank, 32)
        self.assertEqual(adapter.target_modules, ("q_proj", "v_proj"))
        self.assertTrue(adapter.enabled)

    def test_invalid_fields_take_defaults_and_log_warning(self) -> None:
        from loguru import logger

        from loom.introspect.overlays import adapter_from_record

        messages: list[str] = []
        sink = logger.add(lambda m: messages.append(str(m)), level="WARNING")
        try:
            adapter = adapter_from_record({"name": "odd", "weight": "heavy", "rank": -3, "category": "persona"})
        finally:
            logger.remove(sink)

        self.assertEqual(adapter.name, "odd")
        self.assertEqual(adapter.id, "odd")
        self.assertEqual(adapter.weight, 0.8)
        self.assertEqual(adapter.rank, 16)
        self.assertEqual(adapter.category, "character")
        self.assertTrue(any("adapter metadata incomplete" in m for m in messages))

    def test_unknown_category_is_other_and_name_from_file(self) -> None:
        from loom.introspect.overlays import adapter_from_record

        adapter = adapter_from_record({"file_path": "/loras/sharp-lines.safetensors", "type": "lighting"})
        self.assertEqual(adapter.category, "other")
        self.assertEqual(adapter.name, "sharp-lines")

    def test_non_object_record_is_invalid(self) -> None:
        from loom.introspect._internal.errors import IntrospectError
        from loom.introspect.overlays import adapter_from_record

        with self.assertRaises(IntrospectError) as cm:
            adapter_from_record(42)
        self.assertEqual(cm.exception.info.type, "InvalidRequestError")

    def test_attribute_objects_are_not_records(self) -> None:
        from types import SimpleNamespace

        from loom.introspect._internal.errors import IntrospectError
        from loom.introspect.overlays import AdapterRecord, adapter_from_record

        with self.assertRaises(IntrospectError) as cm:
            adapter_from_record(SimpleNamespace(name="a", category="style"))
        self.assertEqual(cm.exception.info.type, "InvalidRequestError")

        record = AdapterRecord.model_validate({"Name": "ink", "LoRAType": "Aesthetic", "Rank": 8})
        adapter = adapter_from_record(record)
        self.assertEqual((adapter.name, adapter.category, adapter.rank), ("ink", "style", 8))

    def test_load_adapters_file(self) -> None:
        import json
        import os
        import tempfile

        from loom.introspect.overlays import load_adapters_file

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "adapters.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"adapters": [{"name": "a", "category": "pose"}, {"name": "b", "enabled": False}]}, f)
            adapters = load_adapters_file(path)

        self.assertEqual([a.name for a in adapters], ["a", "b"])
        self.assertEqual(adapters[0].category, "pose")
        self.assertFalse(adapters[1].enabled)
