import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../../")))

import logging

import pytest

from config import CONFIG
from logger import PACKAGE_LOGGER, LoggerFactory, get_logger

pytestmark = pytest.mark.unit


@pytest.fixture
def perf():
    perf_logger = LoggerFactory.get_performance_logger()
    perf_logger.reset()
    yield perf_logger
    perf_logger.reset()


class TestLogger:
    def test_same_instance_per_name(self):
        assert get_logger("nmf_stats.test_a") is get_logger("nmf_stats.test_a")
        assert get_logger("nmf_stats.test_a").name == "nmf_stats.test_a"

    def test_log_analysis_message(self, caplog):
        logger = get_logger("nmf_stats.test_analysis")
        with caplog.at_level(logging.INFO, logger="nmf_stats.test_analysis"):
            logger.log_analysis("log-rank", n_groups=3, n_samples=240, chi_square=12.1)
        assert "log-rank: groups=3, n=240, chi_square=12.1" in caplog.text

    def test_log_analysis_can_be_switched_off(self, caplog):
        logger = get_logger("nmf_stats.test_quiet")
        CONFIG.update("logging.log_analysis_operations", False)
        try:
            with caplog.at_level(logging.INFO, logger="nmf_stats.test_quiet"):
                logger.log_analysis("PCA", n_groups=2, n_samples=10)
        finally:
            CONFIG.update("logging.log_analysis_operations", True)
        assert "PCA" not in caplog.text


class TestTrackTime:
    def test_records_duration(self, perf):
        logger = get_logger("nmf_stats.test_timing")
        with logger.track_time("unit_op"):
            sum(range(100))
        with logger.track_time("unit_op"):
            pass

        summary = logger.timing_summary()
        assert summary["unit_op"]["count"] == 2
        assert summary["unit_op"]["min"] <= summary["unit_op"]["mean"] <= summary["unit_op"]["max"]

    def test_records_when_block_raises(self, perf):
        logger = get_logger("nmf_stats.test_timing")
        with pytest.raises(ValueError):
            with logger.track_time("failing_op"):
                raise ValueError("boom")
        assert perf.summary()["failing_op"]["count"] == 1

    def test_disabled(self, perf):
        CONFIG.update("logging.log_performance", False)
        try:
            with get_logger("nmf_stats.test_timing").track_time("silent_op"):
                pass
        finally:
            CONFIG.update("logging.log_performance", True)
        assert "silent_op" not in perf.summary()


class TestConfigure:
    @pytest.fixture
    def fresh_factory(self):
        package = logging.getLogger(PACKAGE_LOGGER)
        saved_handlers = list(package.handlers)
        saved_level = package.level
        saved_configured = LoggerFactory._configured
        for handler in saved_handlers:
            package.removeHandler(handler)
        LoggerFactory._configured = False
        yield package
        for handler in list(package.handlers):
            package.removeHandler(handler)
        for handler in saved_handlers:
            package.addHandler(handler)
        package.setLevel(saved_level)
        LoggerFactory._configured = saved_configured

    def test_handlers_go_on_package_logger(self, fresh_factory):
        root_handlers = list(logging.getLogger().handlers)
        root_level = logging.getLogger().level

        LoggerFactory.configure()

        assert logging.getLogger().handlers == root_handlers
        assert logging.getLogger().level == root_level
        assert any(isinstance(h, logging.StreamHandler) for h in fresh_factory.handlers)
        assert fresh_factory.level == logging.INFO

    def test_configure_runs_once(self, fresh_factory):
        LoggerFactory.configure()
        LoggerFactory.configure()
        assert len(fresh_factory.handlers) == 1

    def test_disabled_silences_package_only(self, fresh_factory):
        CONFIG.update("logging.enabled", False)
        try:
            LoggerFactory.configure()
        finally:
            CONFIG.update("logging.enabled", True)
        assert fresh_factory.handlers == []
        assert not fresh_factory.isEnabledFor(logging.CRITICAL)
        assert logging.getLogger("host.app").isEnabledFor(logging.WARNING)
