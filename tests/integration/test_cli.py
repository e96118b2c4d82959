"""Integration tests for the backupchain CLI."""

import json
from pathlib import Path

import pytest

from backupchain.cli.history import build_parser, main


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a config.yaml pointing at the seeded mirror."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "logging:\n"
        "  level: WARNING\n"
        "instances:\n"
        "  sql01:\n"
        "    driver: sqlite\n"
        "    database_path: sql01.db\n"
    )
    return path


def run_cli(argv, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code, capsys.readouterr().out


class TestCli:
    """Tests for CLI commands."""

    def test_chain(self, catalog_path: Path, config_file: Path, capsys):
        """Test printing restore chains as JSON."""
        code, out = run_cli(["chain", "--config", str(config_file), "-d", "Sales"], capsys)

        assert code == 0
        [result] = json.loads(out)
        assert result["instance"] == "sql01"
        backups = result["chains"][0]["backups"]
        assert [b["backup_set_id"] for b in backups] == [1, 3, 4, 5]
        assert backups[0]["last_lsn"] == "2000"
        assert backups[0]["type_name"] == "Full"

    def test_chain_ignore_diff(self, catalog_path: Path, config_file: Path, capsys):
        """Test the --ignore-diff flag."""
        code, out = run_cli(
            ["chain", "--config", str(config_file), "-d", "Sales", "--ignore-diff"], capsys
        )
        assert code == 0
        backups = json.loads(out)[0]["chains"][0]["backups"]
        assert [b["backup_set_id"] for b in backups] == [1, 2, 4, 5]

    def test_last_copy_only(self, catalog_path: Path, config_file: Path, capsys):
        """Test the last command with copy-only backups included."""
        code, out = run_cli(
            ["last", "--config", str(config_file), "-d", "Sales", "--type", "Full", "--include-copy-only"],
            capsys,
        )
        assert code == 0
        assert [b["backup_set_id"] for b in json.loads(out)[0]["last"]] == [6]

    def test_history_from_mirror(self, catalog_path: Path, tmp_path: Path, capsys):
        """Test querying an ad-hoc mirror passed on the command line."""
        empty_config = tmp_path / "empty.yaml"
        empty_config.write_text("logging:\n  level: ERROR\n")

        code, out = run_cli(
            ["history", "--config", str(empty_config), "--mirror", str(catalog_path), "--type", "Log", "--min-lsn", "2500"],
            capsys,
        )
        assert code == 0
        [result] = json.loads(out)
        assert result["instance"] == "sql01"
        assert [b["backup_set_id"] for b in result["history"]] == [5, 4]

    @pytest.mark.parametrize(
        "option, value",
        [("--recovery-fork", "not-a-guid"), ("--min-lsn", "12:zz")],
    )
    def test_invalid_option_is_usage_error(self, config_file: Path, capsys, option, value):
        """Test that malformed fork and LSN values are rejected by the parser."""
        with pytest.raises(SystemExit) as exc_info:
            main(["history", "--config", str(config_file), option, value])

        assert exc_info.value.code == 2
        err = capsys.readouterr().err
        assert option in err
        assert "Traceback" not in err

    def test_recovery_fork_parsed(self):
        """Test that a fork GUID is converted while parsing."""
        args = build_parser().parse_args(
            ["history", "--recovery-fork", "6f9619ff-8b86-d011-b42d-00c04fc964ff", "--min-lsn", "00000022:0000007b:0001"]
        )
        assert args.min_lsn == 34000000012300001
        assert str(args.recovery_fork) == "6f9619ff-8b86-d011-b42d-00c04fc964ff"

    def test_failed_instance_exit_code(self, catalog_path: Path, config_file: Path, capsys):
        """Test that a failing instance makes the CLI exit 1."""
        config_file.write_text(
            config_file.read_text()
            + "  sql02:\n"
            "    driver: sqlite\n"
            "    database_path: missing.db\n"
        )
        code, out = run_cli(["forks", "--config", str(config_file)], capsys)

        assert code == 1
        results = {r["instance"]: r for r in json.loads(out)}
        assert results["sql02"]["error_type"] == "CatalogConnectionError"
        assert "Sales" in results["sql01"]["forks"]

    def test_paths(self, config_file: Path, capsys):
        """Test planning striped backup paths."""
        code, out = run_cli(
            [
                "paths", "--config", str(config_file), "-d", "db",
                "--directory", "C:\\Backups", "--file-count", "2",
                "--file-name", "db_x.bak", "--increment-prefix",
            ],
            capsys,
        )
        assert code == 0
        assert json.loads(out) == ["C:\\Backups\\1-db_x-1-of-2.bak", "C:\\Backups\\2-db_x-2-of-2.bak"]

    def test_paths_linux_folder(self, config_file: Path, capsys):
        """Test Linux separators with a database folder."""
        code, out = run_cli(
            [
                "paths", "--config", str(config_file), "-d", "Sales",
                "--directory", "/var/opt/mssql/backup", "--file-name", "Sales.bak",
                "--host-os", "linux", "--create-folder",
            ],
            capsys,
        )
        assert code == 0
        assert json.loads(out) == ["/var/opt/mssql/backup/Sales/Sales.bak"]

    def test_no_command(self, capsys):
        """Test that running without a command prints help and fails."""
        code, out = run_cli([], capsys)
        assert code == 1
        assert "usage: backupchain" in out

    def test_parser_defaults(self):
        """Test parsed defaults for the chain command."""
        args = build_parser().parse_args(["chain", "-i", "sql01", "-i", "sql02"])
        assert args.instance == ["sql01", "sql02"]
        assert args.ignore_diff is False
        assert args.lsn_sort is None
