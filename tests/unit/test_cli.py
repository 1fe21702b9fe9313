"""Tests for the ari-client command line."""

import json

import click
import httpx
import pytest
from click.testing import CliRunner

from ari_client import cli
from ari_client.client import connect


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def configs(monkeypatch, http_transport, connector):
    """Route the CLI's connect() through the mocked server; records configs."""
    seen = []

    async def fake_connect(*, config):
        seen.append(config)
        return await connect(config=config, transport=http_transport, connect=connector)

    monkeypatch.setattr(cli, "connect", fake_connect)
    return seen


def json_lines(output):
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


class TestParseParams:
    def test_pairs(self):
        assert cli.parse_params(("channelId=c1", "reason=busy")) == {"channelId": "c1", "reason": "busy"}

    def test_repeated_name_becomes_list(self):
        assert cli.parse_params(("channel=a", "channel=b", "channel=c")) == {"channel": ["a", "b", "c"]}

    def test_value_may_contain_equals(self):
        assert cli.parse_params(("variables=A=1",)) == {"variables": "A=1"}

    def test_body_parsed_as_json(self):
        assert cli.parse_params(('body={"variables": {"k": "v"}}',)) == {"body": {"variables": {"k": "v"}}}

    def test_body_not_json(self):
        assert cli.parse_params(("body=hello",)) == {"body": "hello"}

    def test_missing_equals(self):
        with pytest.raises(click.BadParameter):
            cli.parse_params(("channelId",))


class TestGlobalOptions:
    def test_options_build_config(self, runner, configs):
        result = runner.invoke(
            cli.main, ["--url", "http://pbx:8088/ari", "--user", "admin", "--password", "pw", "operations"]
        )

        assert result.exit_code == 0, result.output
        assert configs[0].base_url == "http://pbx:8088/ari"
        assert configs[0].api_key == "admin:pw"

    def test_environment_fallback(self, runner, configs):
        result = runner.invoke(cli.main, ["operations"], env={"ARI_USERNAME": "envuser", "ARI_PASSWORD": "envpw"})

        assert result.exit_code == 0, result.output
        assert configs[0].username == "envuser"
        assert configs[0].password == "envpw"


class TestOperationsCommand:
    def test_table(self, runner, configs):
        result = runner.invoke(cli.main, ["operations"])

        assert result.exit_code == 0, result.output
        assert "channels.originate" in result.output
        assert "bridges.addChannel" in result.output
        assert "Total: 13 operation(s)" in result.output

    def test_json_single_group(self, runner, configs):
        result = runner.invoke(cli.main, ["operations", "channels", "--format", "json"])

        assert result.exit_code == 0, result.output
        rows = json.loads(result.output)
        assert {row["group"] for row in rows} == {"channels"}
        assert len(rows) == 6
        play = next(row for row in rows if row["name"] == "play")
        assert play["url"] == "http://localhost:8088/ari/channels/{channelId}/play"
        assert {"name": "media", "in": "query", "required": True} in play["parameters"]

    def test_unknown_group(self, runner, configs):
        result = runner.invoke(cli.main, ["operations", "spaceships"])

        assert result.exit_code == 2
        assert "Unknown resource group: spaceships" in result.output

    def test_load_failure(self, runner, configs, api_documents):
        del api_documents["/ari/api-docs/channels.json"]

        result = runner.invoke(cli.main, ["operations"])

        assert result.exit_code == 1
        assert "Error:" in result.output


class TestCallCommand:
    def test_prints_json_result(self, runner, configs, ari_server):
        ari_server.route("GET", "/ari/channels", httpx.Response(200, json=[{"id": "c1", "state": "Up"}]))

        result = runner.invoke(cli.main, ["call", "channels", "list"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == [{"id": "c1", "state": "Up"}]

    def test_arguments_sent(self, runner, configs, ari_server):
        ari_server.route("POST", "/ari/bridges/b1/addChannel", httpx.Response(204))

        result = runner.invoke(
            cli.main, ["call", "bridges", "addChannel", "-p", "bridgeId=b1", "-p", "channel=a", "-p", "channel=b"]
        )

        assert result.exit_code == 0, result.output
        request = ari_server.api_requests()[0]
        assert request.url.params.get_list("channel") == ["a", "b"]

    def test_error_status(self, runner, configs, ari_server):
        ari_server.route("GET", "/ari/channels/nope", httpx.Response(404, json={"message": "Channel not found"}))

        result = runner.invoke(cli.main, ["call", "channels", "get", "-p", "channelId=nope"])

        assert result.exit_code == 1
        assert "HTTP 404" in result.output
        assert "Channel not found" in result.output

    def test_binding_error(self, runner, configs):
        result = runner.invoke(cli.main, ["call", "channels", "answer"])

        assert result.exit_code == 1
        assert "missing required parameter(s): channelId" in result.output

    def test_unknown_operation(self, runner, configs):
        result = runner.invoke(cli.main, ["call", "channels", "teleport"])

        assert result.exit_code == 2
        assert "Unknown operation: channels.teleport" in result.output


class TestEventsCommand:
    def test_tails_until_retries_exhausted(self, runner, monkeypatch, http_transport, connector):
        async def scripted(url, **kwargs):
            ws = await connector(url, **kwargs)
            ws.feed({"type": "StasisStart", "application": "demo", "channel": {"id": "c1"}})
            ws.drop()
            connector.fail_always = True
            return ws

        async def fake_connect(*, config):
            config.reconnect_delay = 0.0
            config.max_reconnect_attempts = 1
            return await connect(config=config, transport=http_transport, connect=scripted)

        monkeypatch.setattr(cli, "connect", fake_connect)

        result = runner.invoke(cli.main, ["events", "demo", "--subscribe-all"])

        assert result.exit_code == 0, result.output
        assert [line["type"] for line in json_lines(result.output)] == [
            "WebSocketConnected",
            "StasisStart",
            "WebSocketReconnecting",
            "WebSocketMaxRetries",
        ]
        assert json_lines(result.output)[1]["channel"] == {"id": "c1"}
        assert "subscribeAll=true" in connector.urls[0]

    def test_requires_application(self, runner, configs):
        result = runner.invoke(cli.main, ["events"])

        assert result.exit_code == 2
