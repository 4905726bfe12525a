import unittest


class TestModelRules(unittest.TestCase):
    def test_parses_count_quantization_and_context(self) -> None:
        from loom.introspect._internal.model_rules import extract_metadata

        meta = extract_metadata("llama-3-8b-q4_k_m-32k")
        self.assertEqual(meta.parameter_count, 8_000_000_000)
        self.assertEqual(meta.quantization, "Q4_K_M")
        self.assertEqual(meta.context_length, 32768)
        self.assertEqual(meta.size_class, "advanced")
        self.assertEqual(meta.family, "llama")

    def test_unknown_identifier_uses_conservative_defaults(self) -> None:
        from loom.introspect._internal.model_rules import extract_metadata

        meta = extract_metadata("mystery-model")
        self.assertEqual(meta.context_length, 2048)
        self.assertEqual(meta.quantization, "Unknown")
        self.assertEqual(meta.parameter_count, 0)
        self.assertFalse(meta.parameter_count_known)
        self.assertEqual(meta.size_class, "standard")
        self.assertEqual(meta.family, "unknown")

    def test_model_name_is_file_stem(self) -> None:
        from loom.introspect._internal.model_rules import extract_metadata, model_name_from_id

        self.assertEqual(model_name_from_id("/models/Qwen2.5-7B-Instruct-Q8_0.gguf"), "Qwen2.5-7B-Instruct-Q8_0")
        self.assertEqual(model_name_from_id(r"C:\models\phi-3-mini-4k.gguf"), "phi-3-mini-4k")
        self.assertEqual(model_name_from_id("qwen2.5-0.5b"), "qwen2.5-0.5b")

        meta = extract_metadata("/models/Qwen2.5-7B-Instruct-Q8_0.gguf")
        self.assertEqual(meta.model_id, "/models/Qwen2.5-7B-Instruct-Q8_0.gguf")
        self.assertEqual(meta.family, "qwen")
        self.assertEqual(meta.parameter_count, 7_000_000_000)
        self.assertEqual(meta.quantization, "Q8_0")

    def test_decimal_and_mixture_counts(self) -> None:
        from loom.introspect._internal.model_rules import parse_parameter_count

        self.assertEqual(parse_parameter_count("qwen2.5-0.5b-instruct"), 500_000_000)
        self.assertEqual(parse_parameter_count("phi-3-mini-3.8b"), 3_800_000_000)
        self.assertEqual(parse_parameter_count("mixtral-8x7b-v0.1"), 56_000_000_000)
        self.assertEqual(parse_parameter_count("llama-3-70b"), 70_000_000_000)
        self.assertEqual(parse_parameter_count("model-bf16"), 0)

    def test_size_class_thresholds(self) -> None:
        from loom.introspect._internal.model_rules import size_class_for

        self.assertEqual(size_class_for(0), "standard")
        self.assertEqual(size_class_for(500_000_000), "basic")
        self.assertEqual(size_class_for(1_000_000_000), "standard")
        self.assertEqual(size_class_for(6_900_000_000), "standard")
        self.assertEqual(size_class_for(7_000_000_000), "advanced")
        self.assertEqual(size_class_for(29_000_000_000), "advanced")
        self.assertEqual(size_class_for(30_000_000_000), "experimental")

    def test_quantization_prefers_specific_markers(self) -> None:
        from loom.introspect._internal.model_rules import detect_quantization, is_low_precision

        self.assertEqual(detect_quantization("gemma-2b-bf16"), "BF16")
        self.assertEqual(detect_quantization("gemma-2b-f16"), "F16")
        self.assertEqual(detect_quantization("mistral-7b-Q4_0"), "Q4_0")
        self.assertTrue(is_low_precision("Q4_K_S"))
        self.assertFalse(is_low_precision("Q5_K_M"))
        self.assertFalse(is_low_precision("Unknown"))

    def test_context_tokens(self) -> None:
        from loom.introspect._internal.model_rules import detect_context_length

        self.assertEqual(detect_context_length("phi-3-mini-4k-instruct"), 4096)
        self.assertEqual(detect_context_length("yarn-mistral-7b-128k"), 131072)
        self.assertEqual(detect_context_length("llama-q4_k_m"), 2048)

    def test_family_detection(self) -> None:
        from loom.introspect._internal.model_rules import detect_family

        self.assertEqual(detect_family("CodeLlama-13b"), "llama")
        self.assertEqual(detect_family("Mistral-7B"), "mistral")
        self.assertEqual(detect_family("gemma-2-9b"), "gemma")
        self.assertEqual(detect_family("Phi-3-mini"), "phi")
        self.assertEqual(detect_family("falcon-7b"), "unknown")
