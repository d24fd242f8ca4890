"""
Exception types raised by homestack.

Per-stack and per-action failures are reported as result values; these
exceptions cover the cases that abort a whole run.
"""


class HomestackError(Exception):
    """Base class for all homestack errors."""


class ConfigError(HomestackError):
    """Invalid or missing configuration."""


class PreconditionError(HomestackError):
    """A precondition failed before any stack was touched."""


class RuntimeUnavailableError(PreconditionError):
    """The container runtime is not installed or not reachable."""


class UnknownStackError(PreconditionError):
    """One or more requested stacks are not in the registry."""

    def __init__(self, names, available=()):
        self.names = sorted(names)
        self.available = list(available)
        super().__init__(f"Unknown stack(s): {', '.join(self.names)}")


class DnsError(HomestackError):
    """The DNS provider or IP detection failed."""


class ScheduleError(HomestackError):
    """Reading or writing the host schedule table failed."""
