"""
Working directory provisioning.

Only runs while elevated; an unprivileged start assumes the directories were
prepared by an earlier privileged run or by the host.
"""
import logging
from pathlib import Path
from typing import List

from indexer_entrypoint.errors import ProvisionError
from indexer_entrypoint.schema import DirectorySpec


logger = logging.getLogger(__name__)


def ensure_dirs(spec: DirectorySpec) -> List[str]:
    """
    Create every directory in ``spec.paths`` that does not already exist.

    Args:
        spec: Directories to provision, in order

    Returns:
        Paths that were created on this run

    Raises:
        ProvisionError: If a directory cannot be created
    """
    created = []

    for dir_path in spec.paths:
        path = Path(dir_path)
        if path.is_dir():
            continue

        logger.info(f"Creating {dir_path}")
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProvisionError(f"Cannot create directory {dir_path}: {e}") from e
        created.append(dir_path)

    return created
