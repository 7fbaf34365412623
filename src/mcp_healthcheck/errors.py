"""Error taxonomy and status codes shared across checks."""


class HealthCheckError(Exception):
    """Base class for all mcp-healthcheck errors."""

    code = "unexpected_exception"


class ConfigError(HealthCheckError):
    """Configuration could not be used at all. Aborts the run."""


class ConfigNotFound(ConfigError):
    code = "config_not_found"


class InvalidJson(ConfigError):
    code = "invalid_json"


class EmptyConfig(ConfigError):
    code = "empty_config"


class SchemaViolation(ConfigError):
    code = "schema_violation"


class MissingCredential(HealthCheckError):
    """A required environment variable is absent."""

    code = "missing_credential"

    def __init__(self, names):
        self.names = list(names)
        super().__init__(f"Missing required environment variables: {', '.join(self.names)}")


class ProbeError(HealthCheckError):
    """A probe failed (non-zero exit without usage text, network error)."""

    code = "error"


class ProbeTimeout(ProbeError):
    code = "timeout"


class ProbeMissing(ProbeError):
    code = "missing"


class CapabilityUnavailable(HealthCheckError):
    """Soft failure of a capability check. Never escalates to a probe failure."""

    code = "unavailable"


class ErrorCodes:
    """Probe outcome codes written into result dicts."""
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    MISSING = "missing"


class CapabilityStatus:
    """Capability check states."""
    HEALTHY = "healthy"
    NEEDS_CONFIG = "needs_config"
    NEEDS_SETUP = "needs_setup"
    UNAVAILABLE = "unavailable"
    OPTIONAL = "optional"
