"""CommandLogService 单元测试"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from repograder.services.command.log import CommandLogService, sanitize_log_name


class TestSanitize:
    def test_replaces_separators(self) -> None:
        assert sanitize_log_name("Tests/Unit tests") == "Tests_Unit_tests"

    def test_keeps_dash_underscore(self) -> None:
        assert sanitize_log_name("a-b_c") == "a-b_c"


class TestWriteLog:
    def test_layout(self, tmp_path: Path) -> None:
        svc = CommandLogService(clock=lambda: datetime(2024, 1, 10, 9, 8, 7))
        rel = svc.write_log(tmp_path, "Build/Compile", ["make", "make check"], "$ make\n[OUT] ok\n")
        assert rel == "logs/20240110_090807_Build_Compile.log"
        content = (tmp_path / rel).read_text(encoding="utf-8")
        assert content == (
            "# Commands\n"
            "$ make\n"
            "$ make check\n"
            "\n"
            "# Output\n"
            "$ make\n[OUT] ok\n"
        )

    def test_creates_logs_dir(self, tmp_path: Path) -> None:
        rel = CommandLogService().write_log(tmp_path / "eval" / "001", "X", [], "")
        assert (tmp_path / "eval" / "001" / rel).is_file()
