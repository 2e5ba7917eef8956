import logging

from webmetrics.observability.logging import configure_logging


def test_reconfiguring_replaces_handlers_and_applies_level() -> None:
    root = logging.getLogger()
    previous = (list(root.handlers), root.level)
    try:
        configure_logging("debug")
        configure_logging("WARNING")

        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
        assert logging.getLogger("uvicorn.access").propagate is False
    finally:
        root.handlers, level = previous
        root.setLevel(level)


def test_unknown_level_name_falls_back_to_info() -> None:
    root = logging.getLogger()
    previous = (list(root.handlers), root.level)
    try:
        configure_logging("not-a-level")
        assert root.level == logging.INFO
    finally:
        root.handlers, level = previous
        root.setLevel(level)
