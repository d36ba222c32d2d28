"""
Unit tests for the couchbind command-line tool.
"""

import asyncio
import json

import pytest

from couchbind_sdk import cli
from couchbind_sdk.errors import DatabaseError


def parse(*argv):
    return cli.build_parser().parse_args(argv)


class TestParser:
    """Tests for argument parsing."""

    def test_create_db_options(self):
        args = parse("create-db", "inventory", "-q", "8", "--replicas", "3")

        assert args.command == "create-db"
        assert args.name == "inventory"
        assert args.shards == 8
        assert args.replicas == 3

    def test_changes_options(self):
        args = parse("changes", "tasks", "--since", "now", "--include-docs")

        assert args.since == "now"
        assert args.include_docs is True
        assert args.filter is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse()


class TestRun:
    """Commands against the in-memory server."""

    @pytest.mark.asyncio
    async def test_database_commands(self, server, settings, capsys):
        assert await cli.run(parse("create-db", "inventory"), settings, server.transport) == 0
        assert await cli.run(parse("dbs"), settings, server.transport) == 0
        assert "inventory" in json.loads(capsys.readouterr().out)

        assert await cli.run(parse("get-db", "inventory"), settings, server.transport) == 0
        assert json.loads(capsys.readouterr().out)["db_name"] == "inventory"

        assert await cli.run(parse("delete-db", "inventory"), settings, server.transport) == 0
        assert "inventory" not in server.databases

    @pytest.mark.asyncio
    async def test_get_missing_database(self, server, settings, capsys):
        code = await cli.run(parse("get-db", "missing"), settings, server.transport)

        assert code == 1
        assert "does not exist" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_changes_prints_events(self, server, settings, capsys):
        await cli.run(parse("create-db", "tasks"), settings, server.transport)
        server.databases["tasks"].write("t1", {"class__": "task", "title": "one"})

        task = asyncio.ensure_future(
            cli.run(parse("changes", "tasks", "--include-docs"), settings, server.transport)
        )
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        line = json.loads(capsys.readouterr().out.splitlines()[0])
        assert line["id"] == "t1"
        assert line["doc"]["title"] == "one"
        assert server.open_streams == 0


class TestMain:
    """Exit codes."""

    def test_errors_exit_non_zero(self, monkeypatch):
        async def failing_run(args, settings):
            raise DatabaseError(412, "{}", message="Database 'x' already exists")

        monkeypatch.setattr(cli, "run", failing_run)
        monkeypatch.setattr(cli, "setup_logging", lambda settings: None)

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["create-db", "x"])

        assert exc_info.value.code == 1

    def test_success_exits_zero(self, monkeypatch):
        async def ok_run(args, settings):
            return 0

        monkeypatch.setattr(cli, "run", ok_run)
        monkeypatch.setattr(cli, "setup_logging", lambda settings: None)

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["dbs"])

        assert exc_info.value.code == 0
