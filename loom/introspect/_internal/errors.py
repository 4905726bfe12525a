from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    type: str
    message: str
    parameter: str | None = None
    retryable: bool = False


class IntrospectError(RuntimeError):
    def __init__(self, info: ErrorInfo):
        super().__init__(info.message)
        self.info = info

    @property
    def is_rejection(self) -> bool:
        return self.info.type == "ParameterRejected"

    @property
    def is_unreachable(self) -> bool:
        return self.info.type == "ProbeUnreachable"


def parameter_rejected_error(message: str, parameter: str | None = None) -> IntrospectError:
    return IntrospectError(ErrorInfo(type="ParameterRejected", message=message, parameter=parameter))


def probe_unreachable_error(message: str, retryable: bool = True) -> IntrospectError:
    return IntrospectError(ErrorInfo(type="ProbeUnreachable", message=message, retryable=retryable))


def timeout_error(message: str) -> IntrospectError:
    return probe_unreachable_error(f"timeout: {message}", retryable=True)


def canceled_error(message: str = "introspection canceled") -> IntrospectError:
    return IntrospectError(ErrorInfo(type="Canceled", message=message))


def invalid_request_error(message: str) -> IntrospectError:
    return IntrospectError(ErrorInfo(type="InvalidRequestError", message=message))


def introspection_failed_error(message: str) -> IntrospectError:
    return IntrospectError(ErrorInfo(type="IntrospectionFailed", message=message))
