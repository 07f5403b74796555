import logging
import sys

from image_bundler import logger as ib_logger


def _stderr_handlers(base):
    return [
        h for h in base.handlers if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
    ]


def test_setup_logger_idempotent_handlers(monkeypatch):
    """Calling setup_logger() repeatedly should leave exactly one stderr StreamHandler."""
    monkeypatch.delenv("IMAGE_BUNDLER_LOG_CATS", raising=False)
    base = ib_logger.setup_logger(level=logging.DEBUG)
    _ = ib_logger.setup_logger(level=logging.DEBUG)

    assert len(_stderr_handlers(base)) == 1
    assert base.propagate is False


def test_env_level_overrides_argument(monkeypatch):
    monkeypatch.setenv("IMAGE_BUNDLER_LOG_LEVEL", "warning")
    base = ib_logger.setup_logger(level=logging.DEBUG)
    assert base.level == logging.WARNING
    monkeypatch.delenv("IMAGE_BUNDLER_LOG_LEVEL")
    assert ib_logger.setup_logger(level=logging.INFO).level == logging.INFO


def test_category_filter_by_last_segment(monkeypatch):
    monkeypatch.setenv("IMAGE_BUNDLER_LOG_CATS", "builder, reconciler")
    base = ib_logger.setup_logger()
    (handler,) = _stderr_handlers(base)
    (flt,) = [f for f in handler.filters if isinstance(f, ib_logger._CategoryFilter)]

    def rec(name):
        return logging.LogRecord(name, logging.INFO, __file__, 1, "msg", None, None)

    assert flt.filter(rec("image_bundler.builder"))
    assert flt.filter(rec("image_bundler.reconciler"))
    assert not flt.filter(rec("image_bundler.derivative_store"))

    monkeypatch.delenv("IMAGE_BUNDLER_LOG_CATS")
    ib_logger.setup_logger()
    assert handler.filters == []


def test_get_logger_returns_child():
    child = ib_logger.get_logger("builder")
    assert child.name == "image_bundler.builder"
    assert ib_logger.get_logger().name == "image_bundler"
