"""
Integration tests for the command line interface.
"""
import pytest
import yaml
from click.testing import CliRunner

from devtopo.CLI.main import cli
from devtopo.ENGINE.docker_engine import DockerEngine
from devtopo.errors import EngineError


@pytest.fixture
def topology_file(tmp_path):
    path = tmp_path / "topology.yml"
    path.write_text(yaml.safe_dump({
        "services": {
            "web": {"image": "nginx", "depends_on": {"api": {"condition": "service_healthy"}}},
            "api": {"image": "alpine:3", "depends_on": ["db"]},
            "db": {"image": "postgres:16", "healthcheck": {"test": "pg_isready"}},
        },
    }))
    return path


def test_cli_help():
    runner = CliRunner()
    result = runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    for command in ('up', 'down', 'ps', 'logs', 'order'):
        assert command in result.output


def test_cli_up_help():
    runner = CliRunner()
    result = runner.invoke(cli, ['up', '--help'])
    assert result.exit_code == 0
    assert '--detach' in result.output
    assert '--no-logs' in result.output


def test_cli_order(topology_file):
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', str(topology_file), 'order'])
    assert result.exit_code == 0
    assert result.output.splitlines() == ['1. db', '2. api', '3. web']


def test_cli_order_cycle(tmp_path):
    path = tmp_path / "topology.yml"
    path.write_text(yaml.safe_dump({
        "services": {
            "a": {"image": "alpine:3", "depends_on": ["b"]},
            "b": {"image": "alpine:3", "depends_on": ["a"]},
        },
    }))
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', str(path), 'order'])
    assert result.exit_code == 1
    assert 'Error: Circular dependency' in result.output


def test_cli_up_no_file(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', str(tmp_path / 'non_existent.yml'), 'up'])
    assert result.exit_code == 1
    assert 'Error: Topology file not found' in result.output


def test_cli_logs_unknown_group(topology_file):
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', str(topology_file), 'logs', 'nope'])
    assert result.exit_code == 1
    assert 'Unknown service group(s): nope' in result.output


def test_cli_up_unreachable_daemon(topology_file, monkeypatch):
    calls = []

    async def ping(self):
        raise EngineError("ping", "engine", "Error while fetching server API version")

    async def create_network(self, name, driver="bridge", labels=None):
        calls.append(name)

    monkeypatch.setattr(DockerEngine, "ping", ping)
    monkeypatch.setattr(DockerEngine, "create_network", create_network)
    runner = CliRunner()
    result = runner.invoke(cli, ['-f', str(topology_file), 'up', '--detach'])
    assert result.exit_code == 1
    assert "ping failed for 'engine'" in result.output
    assert 'Services started.' not in result.output
    assert calls == []
