from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from jobrelay.v1.core.exceptions import ConfigurationError
from jobrelay.v1.jobs.types import JobConfig, JobType

if TYPE_CHECKING:
    from jobrelay.v1.jobs.worker import JobExecutionContext

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


class JobConfigRegistry(Registry[JobConfig]):
    """Registry mapping each job type to its delivery configuration."""

    def __init__(self):
        super().__init__("JobConfig")

    def register_config(self, config: JobConfig) -> None:
        """Register a config under its own job type; each type is registered once."""
        key = JobType(config.type).value
        if key in self._implementations:
            raise ConfigurationError(
                f"Job type already registered: {key}", details={"job_type": key}
            )
        self.register(key, config)

    def get_config(self, job_type: JobType | str) -> JobConfig:
        """Get the config for a job type, failing fatally when it is unknown."""
        key = job_type.value if isinstance(job_type, JobType) else str(job_type)
        try:
            return self.get(key)
        except KeyError:
            raise ConfigurationError(
                f"Unknown job type: {key}", details={"job_type": key}
            ) from None

    def ensure_complete(self) -> None:
        """Check that every job type has a registered config."""
        missing = [t.value for t in JobType if t.value not in self._implementations]
        if missing:
            raise ConfigurationError(
                "Job types missing from registry", details={"missing": missing}
            )


# Job Handler Registry - domain logic invoked by the worker wrapper
class JobHandler(Protocol):
    """Protocol for job handlers invoked once per delivery."""

    async def __call__(
        self, payload: Any, context: "JobExecutionContext"
    ) -> dict[str, Any] | None:
        """
        Handle one delivery of a job.

        Handlers may be invoked more than once for the same job_id, so they
        must be idempotent with respect to job_id and idempotency_key.

        Returns:
            Optional JSON-serializable result stored on the execution record
        """
        ...


class JobHandlerRegistry(Registry[JobHandler]):
    """Registry for job handlers keyed by job type."""

    def __init__(self):
        super().__init__("JobHandler")
