# Unit tests for the command line entry point
from unittest.mock import patch

import pytest

from CronRelay.main import main


@pytest.mark.unit
class TestCli:
    def test_next_prints_run_times(self, capsys):
        main(["next", "0 0 * * * *", "--count", "2"])
        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 2
        assert all(line.endswith(":00:00") for line in lines)

    def test_next_accepts_five_fields(self, capsys):
        main(["next", "*/10 * * * *", "--count", "1"])
        assert capsys.readouterr().out.strip().endswith("0:00")

    def test_invalid_expression_exits(self):
        with pytest.raises(SystemExit):
            main(["next", "bad"])

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            main([])

    def test_init_db(self, monkeypatch):
        monkeypatch.setenv("CRONRELAY_DATABASE_URL", "sqlite://")
        main(["init-db"])

    def test_dispatcher_command_wires_components(self, monkeypatch):
        monkeypatch.setenv("CRONRELAY_DATABASE_URL", "sqlite://")
        with patch("CronRelay.main.SyncRedisClient") as client_cls, patch(
            "CronRelay.main.CronDispatcher"
        ) as dispatcher_cls:
            main(["dispatcher"])

        dispatcher_cls.return_value.run.assert_called_once()
        client_cls.return_value.close.assert_called_once()

    def test_scheduler_without_admin(self, monkeypatch):
        monkeypatch.setenv("CRONRELAY_DATABASE_URL", "sqlite://")
        with patch("CronRelay.main.SyncRedisClient"), patch("CronRelay.main.CronScheduler") as scheduler_cls:
            main(["scheduler", "--no-admin"])

        scheduler_cls.return_value.run.assert_called_once()
        scheduler_cls.return_value.stop.assert_called_once()
