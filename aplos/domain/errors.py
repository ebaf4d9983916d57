"""Error taxonomy for startup and runtime failures."""


class AplosError(Exception):
    """Base class for all fatal server errors."""

    event = "fatal_error"


class ConfigurationError(AplosError):
    """Raised when the resolved configuration is inconsistent or infeasible."""

    event = "invalid_configuration"


class InvalidAddress(ConfigurationError):
    """Raised when the listen address cannot be parsed as a TCP address."""


class DirectoryNotFound(ConfigurationError):
    """Raised when the directory to serve does not exist."""


class InvalidHealthPattern(ConfigurationError):
    """Raised when the health check endpoint does not start with a slash."""


class IncompleteTlsConfig(ConfigurationError):
    """Raised when only one of the TLS certificate and key is provided."""


class InvalidTimeout(ConfigurationError):
    """Raised when a timeout is not strictly positive."""


class TlsLoadError(AplosError):
    """Raised when the TLS certificate/key pair cannot be loaded."""

    event = "invalid_tls_config"


class ListenError(AplosError):
    """Raised when the server cannot bind or its serve loop fails."""

    event = "listen_failed"
