"""
Recursive ownership normalization.

Reowns the contents of each root to the runtime identity. The root itself
keeps its ownership (a bind-mounted root stays host-controlled), and any path
starting with an excluded prefix is neither reowned nor walked into.
"""
import logging
import os
from dataclasses import dataclass
from typing import List

from indexer_entrypoint.errors import OwnershipError
from indexer_entrypoint.schema import OwnershipScope, RuntimeIdentity


logger = logging.getLogger(__name__)


@dataclass
class OwnershipSummary:
    """Counts for one normalized root."""
    root: str
    visited: int = 0
    changed: int = 0
    excluded: int = 0
    skipped: bool = False


class OwnershipNormalizer:
    """Applies a RuntimeIdentity to everything under the scope's roots."""

    def __init__(self, scope: OwnershipScope, identity: RuntimeIdentity):
        self.scope = scope
        self.identity = identity

    def _reown(self, path: str, summary: OwnershipSummary):
        summary.visited += 1
        try:
            st = os.lstat(path)
            if st.st_uid == self.identity.uid and st.st_gid == self.identity.gid:
                return
            # lchown: never follow a symlink out of the root or into an excluded tree
            os.lchown(path, self.identity.uid, self.identity.gid)
        except OSError as e:
            raise OwnershipError(f"Cannot change ownership of {path} to {self.identity}: {e}") from e
        summary.changed += 1

    def normalize_root(self, root: str) -> OwnershipSummary:
        """
        Reown every entry below root, skipping excluded prefixes.

        Raises:
            OwnershipError: If an entry cannot be listed or reowned
        """
        summary = OwnershipSummary(root=root)

        if os.path.islink(root):
            logger.info(f"Skip {root} (symlink)")
            summary.skipped = True
            return summary

        if not os.path.isdir(root):
            logger.info(f"Skip {root} (not a directory)")
            summary.skipped = True
            return summary

        excluded = ' '.join(self.scope.excluded) or 'nothing'
        logger.info(f"Fixing permissions on {root} -> {self.identity} (excluding {excluded})")

        def on_error(error: OSError):
            raise OwnershipError(f"Cannot walk {error.filename}: {error}") from error

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            # Prune before descending so excluded volumes are never read
            kept = []
            for name in dirnames:
                path = os.path.join(dirpath, name)
                if self.scope.is_excluded(path):
                    summary.excluded += 1
                    continue
                kept.append(name)
            dirnames[:] = kept

            for name in kept:
                self._reown(os.path.join(dirpath, name), summary)

            for name in filenames:
                path = os.path.join(dirpath, name)
                if self.scope.is_excluded(path):
                    summary.excluded += 1
                    continue
                self._reown(path, summary)

        logger.info(
            f"Ownership of {root}: {summary.changed} changed, "
            f"{summary.visited} visited, {summary.excluded} excluded"
        )
        return summary

    def normalize(self) -> List[OwnershipSummary]:
        """Normalize every root in order."""
        return [self.normalize_root(root) for root in self.scope.roots]
