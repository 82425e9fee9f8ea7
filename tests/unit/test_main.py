"""Unit tests for the goldfish entry point

Tests startup sequencing including:
- Fatal configuration and bootstrap errors exit with status 1
- Nothing listens before bootstrap
- Dev mode wiring of the liveness channel
"""
from unittest.mock import MagicMock, patch

import pytest

from goldfish import main as goldfish_main
from goldfish.core.config import ConfigError, build_config
from goldfish.core.lifecycle import LivenessChannel, ShutdownObserver
from goldfish.vault.bootstrap import BootstrapError
from goldfish.vault.dev import DevBackend, DevVault, DevVaultError


PLAINTEXT_CONFIG = """
listener:
  address: "127.0.0.1:8000"
  tls_disable: 1
vault:
  address: "http://vault.test:8200"
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(PLAINTEXT_CONFIG)
    return str(path)


@pytest.fixture
def observer():
    with patch('goldfish.main.ShutdownObserver') as mock_cls:
        instance = MagicMock()
        instance.triggered = False
        mock_cls.return_value.install.return_value = instance
        yield instance


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("GOLDFISH_TOKEN", raising=False)
    monkeypatch.delenv("GOLDFISH_CONFIG", raising=False)
    with patch('goldfish.main.load_dotenv'):
        yield


class TestParseArgs:

    def test_defaults(self):
        args = goldfish_main.parse_args([])
        assert args.dev is False
        assert args.token == ""
        assert args.config == ""

    def test_env_defaults(self, monkeypatch):
        monkeypatch.setenv("GOLDFISH_TOKEN", "s.from-env")
        monkeypatch.setenv("GOLDFISH_CONFIG", "/etc/goldfish.yaml")

        args = goldfish_main.parse_args([])

        assert args.token == "s.from-env"
        assert args.config == "/etc/goldfish.yaml"


class TestMain:

    def test_version(self, capsys):
        assert goldfish_main.main(["--version"]) == 0
        assert "Goldfish version: v" in capsys.readouterr().out

    def test_no_config_source(self, observer, caplog):
        assert goldfish_main.main([]) == 1
        assert "no configuration source" in caplog.text

    def test_missing_config_file(self, observer, tmp_path):
        assert goldfish_main.main(["--config", str(tmp_path / "missing.yaml")]) == 1

    def test_bootstrap_failure_never_listens(self, observer, config_file):
        with patch('goldfish.main.bootstrap_credentials', side_effect=BootstrapError("expired")), \
                patch('goldfish.main.run_listeners') as mock_run:
            assert goldfish_main.main(["--config", config_file, "--token", "s.expired"]) == 1

        mock_run.assert_not_called()

    def test_listener_failure(self, observer, config_file):
        from goldfish.core.listeners import ListenerError

        with patch('goldfish.main.run_listeners', side_effect=ListenerError("address already in use")):
            assert goldfish_main.main(["--config", config_file]) == 1

    def test_clean_run(self, observer, config_file):
        with patch('goldfish.main.run_listeners') as mock_run:
            assert goldfish_main.main(["--config", config_file]) == 0

        plan = mock_run.call_args[0][0]
        assert plan.primary.port == 8000
        assert plan.security_headers is False

    def test_waits_for_triggered_shutdown(self, observer, config_file):
        observer.triggered = True
        with patch('goldfish.main.run_listeners'):
            goldfish_main.main(["--config", config_file])

        observer.join.assert_called_once()


class TestStart:

    def _args(self, *argv):
        return goldfish_main.parse_args(list(argv))

    def test_bootstrap_before_listeners(self, config_file):
        order = MagicMock()
        client = MagicMock()

        with patch('goldfish.main.bootstrap_credentials', order.bootstrap), \
                patch('goldfish.main.run_listeners', order.listen):
            goldfish_main.start(self._args("--config", config_file, "--token", "s.tok"), MagicMock(), client=client)

        assert [c[0] for c in order.mock_calls] == ["bootstrap", "listen"]
        order.bootstrap.assert_called_once_with(client, "s.tok", dev_mode=False)
        client.set_config.assert_called_once()

    def test_dev_mode_attaches_liveness(self, capsys):
        liveness = LivenessChannel()
        config = build_config(
            {"listener": {"address": "127.0.0.1:8000", "tls_disable": True}, "vault": {"address": "http://127.0.0.1:8200"}},
            source="test",
        )
        dev_vault = MagicMock()
        dev_vault.liveness = liveness
        dev_vault.start.return_value = DevBackend(
            config=config, wrapping_token="s.dev-wrap", liveness=liveness, root_token="root-123",
        )
        observer = MagicMock()
        client = MagicMock()

        with patch('goldfish.main.bootstrap_credentials') as mock_bootstrap, \
                patch('goldfish.main.run_listeners'), \
                patch('goldfish.main.create_app') as mock_app:
            goldfish_main.start(self._args("--dev"), observer, client=client, dev_vault=dev_vault)

        observer.attach.assert_called_once_with(liveness)
        mock_bootstrap.assert_called_once_with(client, "s.dev-wrap", dev_mode=True)
        assert mock_app.call_args.kwargs["dev_mode"] is True
        out = capsys.readouterr().out
        assert "root-123" in out
        assert "s.dev-wrap" in out

    def test_dev_wins_over_config(self, config_file, caplog):
        dev_vault = MagicMock()
        dev_vault.start.side_effect = goldfish_main.DevVaultError("no vault")

        with pytest.raises(goldfish_main.DevVaultError):
            goldfish_main.start(self._args("--dev", "--config", config_file), MagicMock(), dev_vault=dev_vault)

        assert "ignoring --config" in caplog.text

    def test_signal_during_dev_startup_stops_vault(self):
        """Shutdown while the dev server is still coming up must terminate it"""
        proc = MagicMock(pid=4242)
        proc.poll.return_value = None
        dev_vault = DevVault(popen=MagicMock(return_value=proc), grace_period=0.01)
        exits = []
        observer = ShutdownObserver(grace_period=0, exit_func=exits.append)
        seen = {}

        def interrupted(client):
            observer.trigger("SIGTERM")
            observer.shutdown()
            dev_vault._watcher.join(timeout=5)
            seen["terminated"] = proc.terminate.called
            raise DevVaultError("interrupted")

        with patch('goldfish.vault.dev.shutil.which', return_value="/usr/bin/vault"), \
                patch.object(DevVault, '_wait_ready', side_effect=interrupted):
            with pytest.raises(DevVaultError):
                goldfish_main.start(self._args("--dev"), observer, client=MagicMock(), dev_vault=dev_vault)

        assert exits == [0]
        assert seen["terminated"] is True

    def test_bad_listener_address_keeps_token(self, tmp_path):
        """An unusable address fails at load time, before the wrapping token is spent"""
        path = tmp_path / "config.yaml"
        path.write_text(PLAINTEXT_CONFIG.replace("127.0.0.1:8000", "goldfish.example.com:https"))

        with patch('goldfish.main.bootstrap_credentials') as mock_bootstrap, \
                patch('goldfish.main.run_listeners'):
            with pytest.raises(ConfigError, match="invalid port"):
                goldfish_main.start(self._args("--config", str(path), "--token", "s.once"), MagicMock(), client=MagicMock())

        mock_bootstrap.assert_not_called()


class TestVaultConnectionErrors:

    def test_missing_ca_cert_is_config_error(self, observer, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text(PLAINTEXT_CONFIG + f"  ca_cert: {tmp_path / 'missing-ca.pem'}\n")

        with patch('goldfish.main.run_listeners') as mock_run:
            assert goldfish_main.main(["--config", str(path)]) == 1

        mock_run.assert_not_called()
        assert "cannot load vault ca_cert" in caplog.text
