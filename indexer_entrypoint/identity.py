"""
Runtime identity resolution.

Each of UID and GID is resolved independently, in strict precedence:
explicit override, then ownership of the reference directory (when
auto-detection is enabled and the directory exists), then the fixed default.
"""
import logging
import os
from typing import Optional, Tuple

from indexer_entrypoint.config import EntrypointConfig
from indexer_entrypoint.errors import IdentityReadError
from indexer_entrypoint.schema import (
    DEFAULT_GID,
    DEFAULT_UID,
    IdentitySource,
    ResolvedIdentity,
    RuntimeIdentity,
)


logger = logging.getLogger(__name__)


def read_directory_owner(path: str) -> Tuple[int, int]:
    """
    Read the owning UID and GID of a directory.

    Raises:
        IdentityReadError: If the directory cannot be stat'ed
    """
    try:
        st = os.stat(path)
    except OSError as e:
        raise IdentityReadError(f"Cannot read ownership of {path}: {e}") from e
    return st.st_uid, st.st_gid


class IdentityResolver:
    """Resolves the RuntimeIdentity once at startup."""

    def __init__(self, config: EntrypointConfig):
        self.config = config

    def _auto_detect(self) -> Optional[Tuple[int, int]]:
        if not self.config.auto_detect:
            return None
        if not os.path.isdir(self.config.reference_dir):
            logger.debug(f"Auto-detect enabled but {self.config.reference_dir} is not a directory")
            return None
        try:
            return read_directory_owner(self.config.reference_dir)
        except IdentityReadError as e:
            logger.warning(f"{e}; falling back to default identity")
            return None

    def resolve(self) -> ResolvedIdentity:
        """
        Resolve the identity the target command will run under.

        Returns:
            ResolvedIdentity with the source of each field
        """
        uid = self.config.explicit_uid
        gid = self.config.explicit_gid
        uid_source = IdentitySource.EXPLICIT_OVERRIDE
        gid_source = IdentitySource.EXPLICIT_OVERRIDE

        if uid is None or gid is None:
            detected = self._auto_detect()
            if detected is not None:
                if uid is None:
                    uid, uid_source = detected[0], IdentitySource.AUTO_DETECTED
                if gid is None:
                    gid, gid_source = detected[1], IdentitySource.AUTO_DETECTED

        if uid is None:
            uid, uid_source = DEFAULT_UID, IdentitySource.DEFAULT
        if gid is None:
            gid, gid_source = DEFAULT_GID, IdentitySource.DEFAULT

        resolved = ResolvedIdentity(
            identity=RuntimeIdentity(uid=uid, gid=gid),
            uid_source=uid_source,
            gid_source=gid_source,
            reference_dir=self.config.reference_dir,
        )
        logger.info(f"Resolved UID:GID {resolved.describe()}")
        return resolved


def resolve_identity(config: EntrypointConfig) -> ResolvedIdentity:
    """Resolve the runtime identity for a configuration."""
    return IdentityResolver(config).resolve()
