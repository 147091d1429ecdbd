"""Container runtime collaborator exports."""

from argus_resilience.runtime.docker import (
    ContainerRuntime,
    ContainerStatus,
    DockerCLIRuntime,
    HealthcheckOptions,
    RunOptions,
    RuntimeCommandError,
    build_run_args,
    is_port_in_use,
    run_command,
)

__all__ = [
    "ContainerRuntime",
    "ContainerStatus",
    "DockerCLIRuntime",
    "HealthcheckOptions",
    "RunOptions",
    "RuntimeCommandError",
    "build_run_args",
    "is_port_in_use",
    "run_command",
]
