"""Failures that end a probe session."""


class ProbeError(Exception):
    """Base class; ``exit_code`` is the process status reported for it."""

    exit_code = 1


class ConnectError(ProbeError):
    def __init__(self, error):
        super().__init__(f"TLS connection failed: {error}")
        self.error = error


class PathUnsatisfied(ProbeError):
    def __init__(self, status=None):
        super().__init__(f"Error: No viable network path (status: {status.value if status else 'unknown'})")
        self.status = status


class ALPNMissing(ProbeError):
    def __init__(self):
        super().__init__("Error: Could not determine negotiated protocol")


class ALPNMismatch(ProbeError):
    def __init__(self, expected: str, actual: str):
        label = "HTTP/2" if expected == "h2" else expected
        super().__init__(f"Error: {label} not negotiated, got {actual}")
        self.expected = expected
        self.actual = actual
