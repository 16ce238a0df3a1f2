"""Tests for the execution logger."""

import logging

from regent.core.logger import ExecutionLogger, ExecutionSummary, format_context


class TestFormatContext:
    def test_pairs_in_order(self):
        assert format_context({"step": "s1", "attempt": 2}) == "step=s1 attempt=2"

    def test_quotes_spaces_and_skips_none(self):
        assert format_context({"msg": 'say "hi" now', "skip": None}) == 'msg="say \\"hi\\" now"'

    def test_empty(self):
        assert format_context({}) == ""
        assert format_context({"blank": ""}) == 'blank=""'


class TestExecutionLogger:
    def test_console_levels(self, capsys):
        with ExecutionLogger(color=False) as logger:
            logger.debug("hidden")
            logger.info("shown", step="s1")
            logger.error("broken")

        captured = capsys.readouterr()
        assert "hidden" not in captured.out
        assert "shown step=s1" in captured.out
        assert "broken" in captured.err

    def test_verbose_shows_debug(self, capsys):
        with ExecutionLogger(verbose=True, color=False) as logger:
            logger.debug("details")

        assert "details" in capsys.readouterr().out

    def test_quiet_only_errors(self, capsys):
        with ExecutionLogger(quiet=True, verbose=True, color=False) as logger:
            logger.info("hidden")
            logger.success("hidden too")
            logger.error("visible")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "visible" in captured.err

    def test_file_is_plain_and_appended(self, tmp_path):
        log_file = tmp_path / "logs" / "execution.log"

        with ExecutionLogger(log_file=log_file, quiet=True, color=True) as logger:
            logger.success("first", step="s1")
        with ExecutionLogger(log_file=log_file, quiet=True, color=True) as logger:
            logger.debug("second")

        lines = log_file.read_text().splitlines()
        assert len(lines) == 2
        assert "| SUCCESS  | first step=s1" in lines[0]
        assert "| DEBUG    | second" in lines[1]
        assert "\x1b[" not in lines[0]

    def test_package_loggers_routed_while_open(self, tmp_path):
        log_file = tmp_path / "execution.log"

        with ExecutionLogger(log_file=log_file, quiet=True, route_package_logs=True):
            logging.getLogger("regent.core.files").warning("from a module")
        logging.getLogger("regent.core.files").warning("after close")

        text = log_file.read_text()
        assert "from a module" in text
        assert "after close" not in text

    def test_package_loggers_untouched_by_default(self, tmp_path):
        package_logger = logging.getLogger("regent")
        handlers = list(package_logger.handlers)

        logger = ExecutionLogger(log_file=tmp_path / "execution.log", quiet=True)
        logging.getLogger("regent.core.files").warning("from a module")

        assert package_logger.handlers == handlers
        assert "from a module" not in (tmp_path / "execution.log").read_text()
        logger.close()

    def test_step_summary(self, quiet_logger):
        quiet_logger.start_step("s1", "create_file")
        duration = quiet_logger.complete_step("s1", "SUCCESS", score=1)
        quiet_logger.complete_step("s2", "FAILED", score=-1)
        quiet_logger.record_quality(True)
        quiet_logger.record_quality(False)
        quiet_logger.record_rollback("s1")

        summary = quiet_logger.summary
        assert duration >= 0
        assert summary.status_counts == {"SUCCESS": 1, "FAILED": 1, "ROLLED_BACK": 1}
        assert summary.quality_passed == 1
        assert summary.quality_failed == 1
        assert summary.score_histogram[1] == 1
        assert summary.score_histogram[-1] == 1
        assert summary.mean_score == 0


class TestExecutionSummary:
    def test_lines(self):
        summary = ExecutionSummary()
        summary.status_counts["SUCCESS"] = 2
        summary.score_histogram[1] = 2
        summary.durations_ms.extend([100, 300])

        lines = summary.lines()

        assert lines[0] == "Steps: SUCCESS=2"
        assert "(mean 1.00)" in lines[2]
        assert lines[3] == "Duration: 400ms total, 200ms average"

    def test_empty_summary(self):
        summary = ExecutionSummary()

        assert summary.mean_score is None
        assert summary.to_dict()["average_duration_ms"] == 0.0
        assert summary.lines()[0] == "Steps: none"
