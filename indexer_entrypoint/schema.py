"""
Typed primitives shared by the bootstrap components.

All models are frozen: once a value is built at process entry it is passed
by reference into each step and never mutated.
"""
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_UID = 1001
DEFAULT_GID = 1001


class IdentitySource(str, Enum):
    """Where a resolved UID or GID came from."""
    EXPLICIT_OVERRIDE = "explicit"
    AUTO_DETECTED = "auto-detected"
    DEFAULT = "default"


class PrivilegeState(str, Enum):
    """Privilege level of the bootstrap process itself."""
    ELEVATED = "elevated"
    UNPRIVILEGED = "unprivileged"


class RuntimeIdentity(BaseModel):
    """Numeric identity the target command runs under."""
    model_config = ConfigDict(frozen=True)

    uid: int = Field(..., ge=0, description="Numeric user id")
    gid: int = Field(..., ge=0, description="Numeric group id")

    @classmethod
    def parse(cls, value: str) -> 'RuntimeIdentity':
        """
        Parse a "uid:gid" pair.

        Raises:
            ValueError: If the value is not two non-negative integers
        """
        uid, sep, gid = value.strip().partition(':')
        if not sep or not uid.isdigit() or not gid.isdigit():
            raise ValueError(f"Expected numeric 'uid:gid', got {value!r}")
        return cls(uid=int(uid), gid=int(gid))

    def __str__(self) -> str:
        return f"{self.uid}:{self.gid}"


class ResolvedIdentity(BaseModel):
    """Identity together with the source of each field."""
    model_config = ConfigDict(frozen=True)

    identity: RuntimeIdentity
    uid_source: IdentitySource
    gid_source: IdentitySource
    reference_dir: Optional[str] = None

    def describe(self) -> str:
        """One-line description for the startup log."""
        def label(source: IdentitySource) -> str:
            if source == IdentitySource.AUTO_DETECTED and self.reference_dir:
                return f"auto-detected from {self.reference_dir}"
            return source.value

        if self.uid_source == self.gid_source:
            return f"{self.identity} ({label(self.uid_source)})"
        return (
            f"{self.identity} (uid {label(self.uid_source)}, "
            f"gid {label(self.gid_source)})"
        )


class DirectorySpec(BaseModel):
    """Ordered set of directories that must exist before launch."""
    model_config = ConfigDict(frozen=True)

    paths: Tuple[str, ...] = ()


class OwnershipScope(BaseModel):
    """Roots whose contents are reowned, minus excluded path prefixes."""
    model_config = ConfigDict(frozen=True)

    roots: Tuple[str, ...] = ()
    excluded: Tuple[str, ...] = ()

    def is_excluded(self, path: str) -> bool:
        """Literal prefix match against the string form of the path."""
        return any(path.startswith(prefix) for prefix in self.excluded)


class SyncSpec(BaseModel):
    """One-way mirror of source into destination."""
    model_config = ConfigDict(frozen=True)

    source: str
    destination: str


class LaunchSpec(BaseModel):
    """Command that replaces the bootstrap process."""
    model_config = ConfigDict(frozen=True)

    argv: Tuple[str, ...]
    identity: RuntimeIdentity

    @field_validator('argv')
    @classmethod
    def argv_not_empty(cls, value):
        if not value:
            raise ValueError("argv must name a command to launch")
        return value
