"""
Exception types raised by the jail.

Store and enforcement failures are wrapped so callers never need to know
about redis or ipset specifics.
"""


class JailerError(Exception):
    """Base exception for the ban coordinator."""


class ConfigurationError(JailerError):
    """Raised when settings or the ipset name are invalid at construction."""


class StoreUnreachableError(JailerError):
    """Raised when the infraction store does not answer a ping at construction."""

    def __init__(self, url: str, error: str):
        self.url = url
        super().__init__(f"Infraction store at {url} is unreachable: {error}")


class StoreOperationError(JailerError):
    """Raised when a single store command fails at runtime."""

    def __init__(self, operation: str, key: str | None, error: str):
        self.operation = operation
        self.key = key
        target = f" on {key}" if key else ""
        super().__init__(f"Store {operation} failed{target}: {error}")


class InfractionParseError(JailerError):
    """Raised when a log entry or store key cannot be decoded."""

    def __init__(self, raw: str, kind: str):
        self.raw = raw[:100] if raw else raw
        super().__init__(f"Unable to parse {kind} from {self.raw!r}")


class EnforcementError(JailerError):
    """Raised when an ipset command fails."""

    def __init__(self, command: list[str], returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{' '.join(command)} exited with {returncode}: {stderr}")
