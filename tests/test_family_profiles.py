import json
import os
import tempfile
import unittest
from unittest.mock import patch


class TestFamilyProfiles(unittest.TestCase):
    def test_bundled_profiles_load(self) -> None:
        from loom.introspect.reference.families import FamilyProfileRegistry

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("LOOM_INTROSPECT_FAMILY_PROFILES_PATH", None)
            registry = FamilyProfileRegistry.default()

        self.assertEqual(registry.families(), ["llama", "mistral", "qwen"])
        llama = registry.get("llama")
        assert llama is not None
        self.assertEqual(llama.default_temperature, 0.8)
        self.assertIn("mirostat_mode", llama.excellent)
        self.assertIn("Excellent Mirostat support", llama.special_behaviors)

    def test_unknown_family_is_none(self) -> None:
        from loom.introspect.reference.families import FamilyProfileRegistry

        registry = FamilyProfileRegistry.default()
        self.assertIsNone(registry.get("unknown"))
        self.assertIsNone(registry.get(""))
        self.assertIsNone(registry.get(None))
        self.assertNotIn("falcon", registry)

    def test_lookup_is_case_insensitive(self) -> None:
        from loom.introspect.reference.families import FamilyProfileRegistry

        registry = FamilyProfileRegistry.default()
        self.assertIsNotNone(registry.get("Qwen"))
        self.assertIn("MISTRAL", registry)

    def test_extra_file_overrides_and_extends(self) -> None:
        from loom.introspect.reference.families import FamilyProfileRegistry

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "profiles.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(
                    {
                        "Gemma": {"default_temperature": 0.9, "problematic": ["tfs_z"]},
                        "llama": {"default_temperature": 0.5},
                    },
                    f,
                )
            with patch.dict(os.environ, {"LOOM_INTROSPECT_FAMILY_PROFILES_PATH": path}):
                registry = FamilyProfileRegistry.default()

        gemma = registry.get("gemma")
        assert gemma is not None
        self.assertEqual(gemma.default_temperature, 0.9)
        self.assertEqual(gemma.default_top_p, 0.9)
        self.assertEqual(gemma.problematic, frozenset({"tfs_z"}))
        llama = registry.get("llama")
        assert llama is not None
        self.assertEqual(llama.default_temperature, 0.5)
        self.assertEqual(len(registry), 4)

    def test_invalid_table_raises_invalid_request(self) -> None:
        from loom.introspect._internal.errors import IntrospectError
        from loom.introspect.reference.families import parse_profiles

        with self.assertRaises(IntrospectError) as cm:
            parse_profiles({"llama": {"default_temperature": "hot"}})
        self.assertEqual(cm.exception.info.type, "InvalidRequestError")

        with self.assertRaises(IntrospectError):
            parse_profiles(["llama"])

    def test_missing_file_raises_invalid_request(self) -> None:
        from loom.introspect._internal.errors import IntrospectError
        from loom.introspect.reference.families import load_profiles_file

        with self.assertRaises(IntrospectError) as cm:
            load_profiles_file("/nonexistent/profiles.json")
        self.assertEqual(cm.exception.info.type, "InvalidRequestError")
