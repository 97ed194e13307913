from __future__ import annotations

from kubernetes.client import ApiException

STAGE_GLOBAL_DEFAULTS = "global defaults"
STAGE_DOGU_DEFAULTS = "dogu defaults"
STAGE_SENSITIVE_DOGU_DEFAULTS = "sensitive dogu defaults"
STAGE_FQDN = "fqdn discovery"
STAGE_CONFIGURATION = "configuration"


class DefaultConfigError(RuntimeError):
    """Base class for every failure raised by the default-config job."""


class ConfigError(DefaultConfigError):
    """Raised when the job configuration read from the environment is invalid."""


class RegistryError(DefaultConfigError):
    """A configuration resource could not be read or written."""


class NotFoundError(RegistryError):
    """The requested configuration resource does not exist (yet)."""


class ConflictError(RegistryError):
    """The configuration resource was modified or created concurrently."""


class InvalidKeyError(DefaultConfigError):
    """A key cannot be stored in a configuration resource."""


class CertificateError(DefaultConfigError):
    """The ecosystem certificate exists but could not be parsed."""


class LoadBalancerError(DefaultConfigError):
    """The external address of the load balancer service could not be resolved."""


class NotLoadBalancerError(LoadBalancerError):
    """The service exists but is not of type ``LoadBalancer``; retrying will not help."""


class LoadBalancerTimeoutError(LoadBalancerError):
    """No external address appeared before the deadline elapsed."""


class StageError(DefaultConfigError):
    """Wraps a failure with the job stage it happened in.

    The message reads ``"<message>: <cause>"`` so the operator sees the full
    chain in a single log line; ``stage`` and ``cause`` stay available for
    programmatic checks.
    """

    def __init__(self, stage: str, message: str, cause: BaseException) -> None:
        super().__init__(f"{message}: {cause}")
        self.stage = stage
        self.cause = cause


def is_not_found_error(exc: BaseException) -> bool:
    """Return True if *exc* signals a missing resource rather than a real failure."""
    if isinstance(exc, NotFoundError):
        return True
    return isinstance(exc, ApiException) and exc.status == 404


def format_duration(seconds: float) -> str:
    """Render a duration the way operators read it in job logs (``10ms``, ``2s``, ``5m0s``)."""
    if seconds <= 0:
        return "0s"
    if seconds < 1:
        return f"{round(seconds * 1000, 3):g}ms"
    if seconds < 60:
        return f"{round(seconds, 3):g}s"

    total = round(seconds, 3)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{int(hours)}h{int(minutes)}m{secs:g}s"
    return f"{int(minutes)}m{secs:g}s"


# Failures a configuration repository or a raw Kubernetes client may raise.
REPOSITORY_ERRORS: tuple[type[BaseException], ...] = (DefaultConfigError, ApiException)
