"""
Bootstrap sequence for the indexer container.

Order is fixed and never loops back:
1. Detect privilege state and resolve the runtime identity
2. Provision working directories (elevated only)
3. Mirror the staged index into the live data directory
4. Normalize ownership of working directories (elevated only)
5. Launch the target command; nothing runs after this
"""
import logging
from typing import List, Optional

from indexer_entrypoint.config import EntrypointConfig
from indexer_entrypoint.identity import IdentityResolver
from indexer_entrypoint.launcher import Launcher, detect_privilege_state
from indexer_entrypoint.ownership import OwnershipNormalizer
from indexer_entrypoint.provision import ensure_dirs
from indexer_entrypoint.schema import LaunchSpec, PrivilegeState
from indexer_entrypoint.sync import DataSynchronizer, select_backend


logger = logging.getLogger(__name__)


class Bootstrap:
    """Runs the entrypoint steps for one container start."""

    def __init__(self, config: EntrypointConfig, state: Optional[PrivilegeState] = None):
        self.config = config
        self.state = state or detect_privilege_state()

    def run(self, argv: List[str]):
        """
        Prepare the filesystem and hand off to argv.

        Returns only if the launcher is patched out (tests); in production the
        process image is replaced.

        Raises:
            BootstrapError: On any fatal condition before the launch
        """
        elevated = self.state == PrivilegeState.ELEVATED
        logger.debug(f"Privilege state: {self.state.value}")

        resolved = IdentityResolver(self.config).resolve()
        identity = resolved.identity

        if elevated:
            ensure_dirs(self.config.directory_spec)

        backend = select_backend(self.config.sync_backend, preserve_owner=elevated)
        DataSynchronizer(backend).sync(self.config.sync_spec, self.state)

        if elevated:
            OwnershipNormalizer(self.config.ownership_scope, identity).normalize()

        launch_spec = LaunchSpec(argv=tuple(argv), identity=identity)
        Launcher(self.state, mode=self.config.launch_mode).launch(launch_spec)
