"""Tests for the Actuator facade and the command line entry point."""

import asyncio
import logging
import signal

import pytest

from actuator import main as cli
from actuator.communication.ws_client import NORMAL_CLOSURE
from actuator.core.actuator import Actuator
from actuator.core.connection_state import ConnectionState
from tests.helpers import wait_for


class TestActuator:

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, config, broker):
        actuator = Actuator(config, connector=broker.connect)
        task = asyncio.ensure_future(actuator.run())

        await wait_for(lambda: actuator.state is ConnectionState.CONNECTED)
        actuator.stop()
        await asyncio.wait_for(task, timeout=3)

        assert actuator.state is ConnectionState.SHUTTING_DOWN
        assert broker.latest.close_code == NORMAL_CLOSURE

    @pytest.mark.asyncio
    async def test_signal_triggers_shutdown(self, config, broker):
        actuator = Actuator(config, connector=broker.connect)
        task = asyncio.ensure_future(actuator.run())
        await wait_for(lambda: actuator.state is ConnectionState.CONNECTED)

        actuator._on_signal(signal.SIGTERM)
        await asyncio.wait_for(task, timeout=3)

        assert actuator.state is ConnectionState.SHUTTING_DOWN

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, config, broker):
        actuator = Actuator(config, connector=broker.connect)
        actuator.start()
        await wait_for(lambda: actuator.state is ConnectionState.CONNECTED)

        actuator.stop()
        actuator.stop()
        await actuator.ws_client.wait_closed()

        assert len(broker.connections) == 1

    @pytest.mark.asyncio
    async def test_results_are_routed_through_the_session(self, config, broker):
        actuator = Actuator(config, connector=broker.connect)
        actuator.start()
        await wait_for(lambda: actuator.state is ConnectionState.CONNECTED)

        broker.latest.feed({'type': 'command_delivery', 'id': 'c1', 'capability': 'nope', 'payload': {}})
        await wait_for(lambda: broker.latest.messages('command_result'))

        assert broker.latest.messages('command_result')[0]['id'] == 'c1'
        actuator.stop()
        await actuator.ws_client.wait_closed()

    def test_backoff_built_from_config(self, make_config):
        actuator = Actuator(make_config(reconnect={'base_ms': 10, 'max_ms': 20, 'max_attempts': 4}))
        assert actuator.backoff.base_ms == 10
        assert actuator.backoff.max_ms == 20
        assert actuator.backoff.max_attempts == 4
        assert actuator.command_executor.registry is actuator.registry

    @pytest.mark.parametrize("max_attempts, shown", [(None, 'Infinite'), (0, '0'), (3, '3')])
    def test_startup_log_reports_attempt_ceiling(self, make_config, caplog, monkeypatch, max_attempts, shown):
        monkeypatch.setattr(logging.getLogger('actuator'), 'propagate', True)
        caplog.set_level(logging.INFO, logger='actuator')

        Actuator(make_config(reconnect={'max_attempts': max_attempts}))

        assert f"Max reconnect attempts: {shown}" in caplog.text


class FakeActuator:
    instances = []

    def __init__(self, config):
        self.config = config
        self.ran = False
        FakeActuator.instances.append(self)

    async def run(self):
        self.ran = True


@pytest.fixture
def cli_env(monkeypatch):
    for name in ('SEKS_BROKER_URL', 'SEKS_BROKER_TOKEN', 'SEKS_ACTUATOR_CONFIG'):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, 'setup_logger', lambda **kwargs: None)
    monkeypatch.setattr(cli, 'Actuator', FakeActuator)
    FakeActuator.instances = []
    return monkeypatch


class TestMain:

    def test_missing_environment_exits_with_error(self, cli_env, capsys):
        assert cli.main([]) == 1

        err = capsys.readouterr().err
        assert 'SEKS_BROKER_URL' in err
        assert 'SEKS_BROKER_TOKEN' in err
        assert FakeActuator.instances == []

    def test_missing_config_file_exits_with_error(self, cli_env, tmp_path):
        cli_env.setenv('SEKS_BROKER_URL', 'https://broker.test')
        cli_env.setenv('SEKS_BROKER_TOKEN', 'tok')
        assert cli.main(['--config', str(tmp_path / 'absent.json')]) == 1

    def test_runs_actuator_with_cli_overrides(self, cli_env, tmp_path):
        cli_env.setenv('SEKS_BROKER_URL', 'https://broker.test')
        cli_env.setenv('SEKS_BROKER_TOKEN', 'tok')

        code = cli.main(['--id', 'build-box', '--cwd', str(tmp_path), '--capabilities', 'actuator/shell, shell'])

        assert code == 0
        [actuator] = FakeActuator.instances
        assert actuator.ran
        assert actuator.config.get('actuator_id') == 'build-box'
        assert actuator.config.get('cwd') == str(tmp_path)
        assert actuator.config.get('capabilities') == ['actuator/shell', 'shell']

    def test_version_flag(self, cli_env, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(['--version'])
        assert exc_info.value.code == 0
        assert '0.1.0' in capsys.readouterr().out


class TestOverridesFromArgs:

    def test_unset_options_are_none(self):
        args = cli._build_parser().parse_args([])
        overrides = cli._overrides_from_args(args)
        assert overrides['actuator_id'] is None
        assert overrides['capabilities'] is None
        assert overrides['websocket'] == {'handshake': None}

    def test_handshake_and_logging(self):
        args = cli._build_parser().parse_args(['--handshake', 'register', '--log-level', 'DEBUG',
                                               '--log-file', '/tmp/actuator.log'])
        overrides = cli._overrides_from_args(args)
        assert overrides['websocket'] == {'handshake': 'register'}
        assert overrides['logging'] == {'level': 'DEBUG', 'file': '/tmp/actuator.log'}
