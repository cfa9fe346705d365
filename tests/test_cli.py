import io
import json
from datetime import datetime

import pytest

from sla_sync import __main__ as cli
from sla_sync import config as config_module
from sla_sync.common.json_logger import JsonLogger
from sla_sync.config import Config, ConfigError


@pytest.fixture
def cfg(source_url, analytics_url) -> Config:
    env = {
        "RUN_ENV": "test",
        "SOURCE_DATABASE_URL": source_url,
        "DATABASE_URL": analytics_url,
        "ALEMBIC_CONFIG": "alembic.ini",
        "JSON_LOG_FILE": "",
    }
    return Config.from_values(env, {})


@pytest.fixture
def run_cli(monkeypatch, cfg, capsys):
    monkeypatch.setattr(config_module, "get_config", lambda: cfg)
    monkeypatch.setattr(
        cli,
        "get_logger",
        lambda run_id, **_: JsonLogger(run_id=run_id, stream=io.StringIO(), log_file_path=None),
    )

    def _run(argv: list[str]) -> tuple[int, dict]:
        code = cli.main(argv)
        return code, json.loads(capsys.readouterr().out)

    return _run


def test_tat_set_then_list(run_cli) -> None:
    code, saved = run_cli(
        [
            "tat",
            "set",
            "--brand-name",
            "Rituals",
            "--brand-code",
            "RIT",
            "--country",
            "sg",
            "--processed",
            "4h",
            "--shipped",
            "3d",
            "--delivered",
            "10d",
            "--risk-pct",
            "75",
        ]
    )
    assert code == cli.EXIT_OK
    assert saved["tat_config"]["country_code"] == "SG"
    assert saved["tat_config"]["brand_code"] == "rit"

    code, listed = run_cli(["tat", "list"])
    assert code == cli.EXIT_OK
    assert [(row["brand_name"], row["risk_pct"]) for row in listed["tat_config"]] == [("Rituals", 75)]


def test_invalid_tat_is_a_setup_error(run_cli) -> None:
    code, payload = run_cli(
        [
            "tat",
            "set",
            "--brand-name",
            "Rituals",
            "--brand-code",
            "rit",
            "--country",
            "SG",
            "--processed",
            "soon",
            "--shipped",
            "3d",
            "--delivered",
            "10d",
        ]
    )

    assert code == cli.EXIT_SETUP
    assert "processed_tat" in payload["error"]


def test_validate_clean_database_exits_ok(run_cli) -> None:
    code, payload = run_cli(["validate"])

    assert code == cli.EXIT_OK
    assert payload["summary"]["total_issues"] == 0


def test_sync_reports_jobs(run_cli, source_url, make_source_tables, make_order) -> None:
    make_source_tables(source_url, "victoriasecret", "my", [make_order("VS1", datetime(2025, 5, 10))])

    code, record = run_cli(["--run-id", "cli-run", "sync", "--strategy", "full"])

    assert code == cli.EXIT_OK
    assert record["run_id"] == "cli-run"
    assert record["total_processed"] == 1


def test_unknown_order_exits_failed(run_cli) -> None:
    code, payload = run_cli(["order", "NOPE"])

    assert code == cli.EXIT_FAILED
    assert payload["order_no"] == "NOPE"


def test_config_error_is_a_setup_error(monkeypatch, capsys) -> None:
    def _broken() -> Config:
        raise ConfigError("Missing required environment variable: DATABASE_URL")

    monkeypatch.setattr(config_module, "get_config", _broken)

    assert cli.main(["status"]) == cli.EXIT_SETUP
    assert "DATABASE_URL" in json.loads(capsys.readouterr().out)["error"]


def test_parser_rejects_unknown_strategy() -> None:
    with pytest.raises(SystemExit):
        cli.main(["sync", "--strategy", "nightly"])
