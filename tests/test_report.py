import logging

from inboxkit.utils.logs import report
from inboxkit.utils.logs.report import NULL_OBSERVER, ReportObserver


def test_logger_names_follow_the_package_path():
    logger = report.settings("/srv/app/src/inboxkit/analysis/gaps.py")
    assert logger.name == "inboxkit.analysis.gaps"
    assert report.settings("/tmp/notebook.py").name == "inboxkit.notebook"


def test_report_observer_logs_traces(caplog):
    observer = ReportObserver(logging.getLogger("tests.observer"))

    with caplog.at_level(logging.DEBUG, logger="tests.observer"):
        observer.trace("gaps.run", length=2, expected=1000.0)

    assert "gaps.run expected=1000.0 length=2" in caplog.text


def test_null_observer_is_silent(caplog):
    with caplog.at_level(logging.DEBUG):
        assert NULL_OBSERVER.trace("anything", value=1) is None
    assert caplog.text == ""
