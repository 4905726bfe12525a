import threading
import unittest


def _caps(parameters=None):  # type: ignore[no-untyped-def]
    from loom.introspect.reference.parameters import core_parameters
    from loom.introspect.types import ModelCapabilities

    if parameters is None:
        parameters = {cap.name: cap for cap in core_parameters(4096)}
    return ModelCapabilities(
        model_id="/models/llama-3-8b-q8_0.gguf",
        family="llama",
        size_class="advanced",
        parameter_count=8_000_000_000,
        context_length=4096,
        quantization="Q8_0",
        parameters=parameters,
    )


class _EchoTemperatureRunner:
    def __init__(self) -> None:
        self.requests = []

    def submit(self, request, *, timeout_ms=None):  # type: ignore[no-untyped-def]
        self.requests.append(request)
        return f"test {request.overrides.temperature}"


class _ConstantRunner:
    def __init__(self) -> None:
        self.requests = []

    def submit(self, request, *, timeout_ms=None):  # type: ignore[no-untyped-def]
        self.requests.append(request)
        return "test"


class TestModifiabilityValidator(unittest.TestCase):
    def test_identical_outputs_mark_parameter_locked(self) -> None:
        from loom.introspect.modifiability import ModifiabilityValidator

        runner = _ConstantRunner()
        caps = _caps()
        out = ModifiabilityValidator().validate(caps, runner)

        self.assertNotIn("temperature", out.parameters)
        self.assertIn("temperature", out.unsupported)
        self.assertTrue(any("temperature" in w for w in out.warnings))
        self.assertEqual(len(runner.requests), 2)
        # input snapshot untouched
        self.assertIn("temperature", caps.parameters)
        self.assertEqual(caps.unsupported, frozenset())

    def test_trials_differ_only_in_temperature(self) -> None:
        from loom.introspect.modifiability import ModifiabilityValidator

        runner = _EchoTemperatureRunner()
        out = ModifiabilityValidator().validate(_caps(), runner)

        self.assertIn("temperature", out.parameters)
        low, high = runner.requests
        self.assertEqual(low.overrides.temperature, 0.1)
        self.assertEqual(high.overrides.temperature, 1.5)
        self.assertEqual(low.messages, high.messages)
        self.assertEqual(low.messages[0].content, "Say 'test' and nothing else.")
        self.assertEqual(low.max_output_tokens, 10)
        self.assertEqual(low.model, "llama-3-8b-q8_0")

    def test_runner_failure_skips_check(self) -> None:
        from loom.introspect._internal.errors import probe_unreachable_error
        from loom.introspect.modifiability import ModifiabilityValidator

        class _Down:
            def submit(self, request, *, timeout_ms=None):  # type: ignore[no-untyped-def]
                raise probe_unreachable_error("down")

        caps = _caps()
        out = ModifiabilityValidator().validate(caps, _Down())
        self.assertEqual(set(out.parameters), set(caps.parameters))
        self.assertEqual(out.warnings, ())

    def test_missing_parameter_is_not_checked(self) -> None:
        from loom.introspect.modifiability import ModifiabilityValidator
        from loom.introspect.reference.parameters import core_parameters

        params = {cap.name: cap for cap in core_parameters(4096) if cap.name != "temperature"}
        runner = _ConstantRunner()
        ModifiabilityValidator().validate(_caps(params), runner)
        self.assertEqual(runner.requests, [])

    def test_cancel_propagates(self) -> None:
        from loom.introspect._internal.errors import IntrospectError
        from loom.introspect.modifiability import ModifiabilityValidator

        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(IntrospectError) as cm:
            ModifiabilityValidator().validate(_caps(), _ConstantRunner(), cancel=cancel)
        self.assertEqual(cm.exception.info.type, "Canceled")
