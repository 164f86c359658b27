import logging

import untinnitus.logging_utils as logging_utils
from untinnitus.logging_utils import (
    DEBUG_ENV,
    LOG_DIR_ENV,
    configure_logging,
    debug_enabled,
    get_log_dir,
    get_log_path,
    log_exception,
)


def test_log_dir_uses_env_override(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path))
    assert get_log_dir() == tmp_path
    assert get_log_path() == tmp_path / "untinnitus.log"


def test_debug_flag(monkeypatch) -> None:
    monkeypatch.delenv(DEBUG_ENV, raising=False)
    assert not debug_enabled()
    monkeypatch.setenv(DEBUG_ENV, "1")
    assert debug_enabled()


def test_log_exception_appends_traceback(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path / "nested"))
    try:
        raise RuntimeError("encoder exploded")
    except RuntimeError as exc:
        path = log_exception("batch item demo", exc)

    assert path == tmp_path / "nested" / "untinnitus.log"
    text = path.read_text(encoding="utf-8")
    assert "batch item demo failed: RuntimeError: encoder exploded" in text
    assert "Traceback" in text


def test_configure_logging_adds_handlers_once(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path))
    monkeypatch.setattr(logging_utils, "_logging_configured", False)
    logger = logging.getLogger("untinnitus")
    previous = list(logger.handlers)
    for handler in previous:
        logger.removeHandler(handler)
    try:
        configure_logging()
        configure_logging()
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert len(logger.handlers) == 2
        assert file_handlers[0].baseFilename == str(tmp_path / "untinnitus.log")

        logging.getLogger("untinnitus.render").info("hello from render")
        file_handlers[0].flush()
        assert "hello from render" in (tmp_path / "untinnitus.log").read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        for handler in previous:
            logger.addHandler(handler)
