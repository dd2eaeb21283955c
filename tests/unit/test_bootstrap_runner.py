"""
Unit tests for the bootstrap sequence and CLI entrypoint.

Scenarios run against a temporary /app layout. Ownership changes, identity
switches and exec are patched so the suite runs unprivileged.
"""
from unittest.mock import Mock, call

import pytest

from indexer_entrypoint.__main__ import main
from indexer_entrypoint.config import EntrypointConfig
from indexer_entrypoint.errors import SyncPreconditionError
from indexer_entrypoint.runner import Bootstrap
from indexer_entrypoint.schema import PrivilegeState


@pytest.fixture
def app(tmp_path, fake_tree):
    """Container layout: a mounted block dir with a staged index."""
    root = tmp_path / "app"
    fake_tree(root, {
        'bel_20_node': 'binary',
        'blk-dir/blk00000.dat': 'blocks',
        'blk-dir/index/CURRENT': 'MANIFEST-000004',
        'blk-dir/index/000005.ldb': 'leveldb',
    })
    return root


@pytest.fixture
def app_env(app):
    """Environment pointing every configured path into the temp layout."""
    return {
        "BLK_DIR": str(app / "blk-dir"),
        "FIX_PERMS_DIRS": f"{app} {app / 'index-dir'} {app / 'rocksdb'}",
        "CREATE_DIRS": f"{app / 'index-dir'} {app / 'rocksdb'}",
        "ENTRYPOINT_SYNC_BACKEND": "python",
    }


def build_config(app, env):
    config = EntrypointConfig.from_env(env)
    return config.model_copy(update={
        'sync_destination': str(app / "index-dir"),
    })


@pytest.fixture
def system(monkeypatch):
    """Record privileged calls made by the launcher and normalizer."""
    recorder = Mock()
    recorder.chowned = {}

    def fake_lchown(path, uid, gid):
        recorder.chowned[str(path)] = (uid, gid)

    # os is shared, so this also records the python mirror preserving owners
    monkeypatch.setattr("indexer_entrypoint.ownership.os.lchown", fake_lchown)
    monkeypatch.setattr("indexer_entrypoint.launcher.pwd.getpwuid", Mock(side_effect=KeyError("no entry")))
    monkeypatch.setattr("indexer_entrypoint.launcher.os.setgroups", recorder.setgroups)
    monkeypatch.setattr("indexer_entrypoint.launcher.os.setgid", recorder.setgid)
    monkeypatch.setattr("indexer_entrypoint.launcher.os.setuid", recorder.setuid)
    monkeypatch.setattr("indexer_entrypoint.launcher.os.execvp", recorder.execvp)
    return recorder


class TestElevatedStart:
    """Scenario: root start with auto-detection from a 2000:2000 block dir."""

    @pytest.fixture
    def owned_by_2000(self, monkeypatch):
        monkeypatch.setattr(
            "indexer_entrypoint.identity.read_directory_owner",
            lambda path: (2000, 2000)
        )

    def test_full_sequence(self, app, app_env, system, owned_by_2000, list_tree, entrypoint_caplog):
        app_env["AUTO_RUN_AS_FROM_BLK_DIR"] = "1"
        config = build_config(app, app_env)

        Bootstrap(config, state=PrivilegeState.ELEVATED).run(["./bel_20_node", "--index"])

        # Provisioning ran
        assert (app / "rocksdb").is_dir()
        # Sync promoted the staged index
        assert list_tree(app / "index-dir") == {"CURRENT", "000005.ldb"}
        # Ownership fixed below /app, never under the block dir, never on roots
        assert system.chowned[str(app / "bel_20_node")] == (2000, 2000)
        assert system.chowned[str(app / "index-dir" / "CURRENT")] == (2000, 2000)
        assert not [p for p in system.chowned if p.startswith(str(app / "blk-dir"))]
        assert str(app) not in system.chowned
        # Launched as 2000:2000
        assert system.mock_calls == [
            call.setgroups([2000]),
            call.setgid(2000),
            call.setuid(2000),
            call.execvp("./bel_20_node", ["./bel_20_node", "--index"]),
        ]
        assert "Resolved UID:GID 2000:2000" in entrypoint_caplog.text
        assert "Starting as 2000:2000" in entrypoint_caplog.text

    def test_sync_before_ownership(self, app, app_env, system, owned_by_2000):
        """Copied index files are included in the ownership fix."""
        app_env["AUTO_RUN_AS_FROM_BLK_DIR"] = "1"
        config = build_config(app, app_env)
        Bootstrap(config, state=PrivilegeState.ELEVATED).run(["indexer"])

        assert str(app / "index-dir" / "000005.ldb") in system.chowned

    def test_missing_source_still_launches(self, app, app_env, system):
        config = build_config(app, app_env).model_copy(update={'sync_source': str(app / "nope")})

        Bootstrap(config, state=PrivilegeState.ELEVATED).run(["indexer"])

        assert list((app / "index-dir").iterdir()) == []
        system.execvp.assert_called_once_with("indexer", ["indexer"])


class TestUnprivilegedStart:
    """Scenario: the container already runs as 1001:1001."""

    def test_skips_provisioning_and_ownership(self, app, app_env, system, list_tree):
        (app / "index-dir").mkdir()
        config = build_config(app, app_env)

        Bootstrap(config, state=PrivilegeState.UNPRIVILEGED).run(["./bel_20_node"])

        assert not (app / "rocksdb").exists()
        assert system.chowned == {}
        assert list_tree(app / "index-dir") == {"CURRENT", "000005.ldb"}
        assert system.mock_calls == [call.execvp("./bel_20_node", ["./bel_20_node"])]

    def test_missing_destination_aborts_before_copy(self, app, app_env, system):
        config = build_config(app, app_env)

        with pytest.raises(SyncPreconditionError):
            Bootstrap(config, state=PrivilegeState.UNPRIVILEGED).run(["./bel_20_node"])

        assert not (app / "index-dir").exists()
        system.execvp.assert_not_called()


class TestMain:
    """Test the CLI wrapper."""

    def test_no_command_exits_non_zero(self, entrypoint_caplog):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1
        assert "no command provided" in entrypoint_caplog.text

    def test_invalid_config_exits_2(self, monkeypatch):
        monkeypatch.setenv("APP_UID", "not-a-number")
        with pytest.raises(SystemExit) as exc_info:
            main(["indexer"])
        assert exc_info.value.code == 2

    def test_print_config(self, monkeypatch, capsys):
        monkeypatch.setenv("RUN_AS", "12:34")
        with pytest.raises(SystemExit) as exc_info:
            main(["--print-config"])
        assert exc_info.value.code == 0
        assert "run_as: '12:34'" in capsys.readouterr().out

    def test_fatal_error_exit_code(self, monkeypatch):
        failing = Mock()
        failing.return_value.run.side_effect = SyncPreconditionError("index-dir missing")
        monkeypatch.setattr("indexer_entrypoint.__main__.Bootstrap", failing)

        with pytest.raises(SystemExit) as exc_info:
            main(["indexer"])
        assert exc_info.value.code == 1

    def test_strips_separator(self, monkeypatch):
        bootstrap = Mock()
        monkeypatch.setattr("indexer_entrypoint.__main__.Bootstrap", bootstrap)

        main(["--", "./bel_20_node", "--flag"])

        bootstrap.return_value.run.assert_called_once_with(["./bel_20_node", "--flag"])
