"""
Error types for the container entrypoint.

Every fatal condition raises a BootstrapError subclass carrying the exit
status the container should stop with. IdentityReadError is the only
non-fatal kind: the identity resolver catches it and falls through.
"""


class BootstrapError(Exception):
    """Fatal bootstrap failure. The target command is never started."""

    exit_code = 1

    def __init__(self, message: str, exit_code: int = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(BootstrapError):
    """Invalid environment or YAML configuration value."""

    exit_code = 2


class IdentityReadError(Exception):
    """Ownership of the reference directory could not be read."""
    pass


class ProvisionError(BootstrapError):
    """A required working directory could not be created."""
    pass


class SyncPreconditionError(BootstrapError):
    """Sync destination is missing and the process cannot create it."""
    pass


class SyncExecutionError(BootstrapError):
    """The mirror copy itself failed."""
    pass


class OwnershipError(BootstrapError):
    """Changing ownership of an entry under a normalization root failed."""
    pass


class LaunchError(BootstrapError):
    """The target command could not be found or executed."""
    pass
