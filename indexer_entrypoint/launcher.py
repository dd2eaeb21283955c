"""
Privilege-drop launcher.

Two states, decided once from the effective UID before anything else runs:
- ELEVATED: switch to the runtime identity, then replace the process image
- UNPRIVILEGED: replace the process image under the current identity

In "exec" mode the launch replaces this process (same PID, same stdio), so
nothing here runs afterwards. "spawn" mode is for platforms without exec:
the command runs as a child, signals are forwarded to it, and this process
exits with the child's status.
"""
import logging
import os
import pwd
import signal
import subprocess
import sys

from indexer_entrypoint.errors import LaunchError
from indexer_entrypoint.logs import flush_logging
from indexer_entrypoint.schema import LaunchSpec, PrivilegeState, RuntimeIdentity


logger = logging.getLogger(__name__)

FORWARDED_SIGNALS = ("SIGTERM", "SIGINT", "SIGHUP", "SIGQUIT", "SIGUSR1", "SIGUSR2")

EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


def detect_privilege_state() -> PrivilegeState:
    """Elevated when the effective UID is the superuser."""
    if os.geteuid() == 0:
        return PrivilegeState.ELEVATED
    return PrivilegeState.UNPRIVILEGED


def current_identity() -> RuntimeIdentity:
    return RuntimeIdentity(uid=os.geteuid(), gid=os.getegid())


def child_exit_status(returncode: int) -> int:
    """Shell convention: 128 + N for a child killed by signal N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


def drop_privileges(identity: RuntimeIdentity):
    """
    Permanently switch this process to identity.

    Supplementary groups come from the passwd entry when the UID has one,
    otherwise they are reduced to the primary GID. GID is set before UID.
    """
    try:
        entry = pwd.getpwuid(identity.uid)
    except KeyError:
        entry = None

    try:
        if entry is not None:
            os.initgroups(entry.pw_name, identity.gid)
            os.environ["HOME"] = entry.pw_dir
        else:
            os.setgroups([identity.gid])
        os.setgid(identity.gid)
        os.setuid(identity.uid)
    except OSError as e:
        raise LaunchError(f"Cannot switch to {identity}: {e}") from e


class Launcher:
    """Hands control to the target command. Terminal step of the bootstrap."""

    def __init__(self, state: PrivilegeState, mode: str = "exec"):
        self.state = state
        if mode == "exec" and not hasattr(os, "execvp"):
            mode = "spawn"
        self.mode = mode

    def launch(self, spec: LaunchSpec):
        """
        Replace this process with spec.argv. Never returns on success.

        Raises:
            LaunchError: If the command cannot be found or executed
        """
        argv = list(spec.argv)

        if self.state == PrivilegeState.ELEVATED:
            logger.info(f"Starting as {spec.identity}: {' '.join(argv)}")
        else:
            logger.info(f"Starting as current user {current_identity()}: {' '.join(argv)}")

        if self.mode == "spawn":
            sys.exit(self._spawn_and_wait(argv, spec.identity))

        if self.state == PrivilegeState.ELEVATED:
            drop_privileges(spec.identity)

        flush_logging()
        self._exec(argv)

    def _exec(self, argv):
        try:
            os.execvp(argv[0], argv)
        except FileNotFoundError as e:
            raise LaunchError(f"Command not found: {argv[0]}", exit_code=EXIT_NOT_FOUND) from e
        except PermissionError as e:
            raise LaunchError(f"Command not executable: {argv[0]}", exit_code=EXIT_NOT_EXECUTABLE) from e
        except OSError as e:
            raise LaunchError(f"Cannot execute {argv[0]}: {e}", exit_code=EXIT_NOT_EXECUTABLE) from e

    def _spawn_and_wait(self, argv, identity: RuntimeIdentity) -> int:
        """Run argv as a child, forward signals, return its exit status."""
        kwargs = {}
        if self.state == PrivilegeState.ELEVATED:
            kwargs = {'user': identity.uid, 'group': identity.gid, 'extra_groups': [identity.gid]}

        flush_logging()
        try:
            proc = subprocess.Popen(argv, **kwargs)
        except FileNotFoundError as e:
            raise LaunchError(f"Command not found: {argv[0]}", exit_code=EXIT_NOT_FOUND) from e
        except PermissionError as e:
            raise LaunchError(f"Command not executable: {argv[0]}", exit_code=EXIT_NOT_EXECUTABLE) from e
        except OSError as e:
            raise LaunchError(f"Cannot execute {argv[0]}: {e}", exit_code=EXIT_NOT_EXECUTABLE) from e

        def forward(signum, frame):
            proc.send_signal(signum)

        previous = {}
        for name in FORWARDED_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is not None:
                previous[signum] = signal.signal(signum, forward)

        try:
            returncode = proc.wait()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        return child_exit_status(returncode)
