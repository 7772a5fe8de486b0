"""Tests for the package entry points and logging setup."""

import pytest
from loguru import logger

import mgrep_local
from mgrep_local.core.config import MgrepConfig
from mgrep_local.log_setup import setup_logging, setup_logging_from_config


@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    setup_logging()


def test_lazy_exports():
    assert mgrep_local.Chunker.__name__ == "Chunker"
    assert mgrep_local.MgrepConfig is MgrepConfig
    with pytest.raises(AttributeError):
        mgrep_local.DoesNotExist


def test_verbose_logging_emits_debug(capsys, restore_logger):
    setup_logging(verbose=True)
    logger.debug("visible debug line")
    assert "visible debug line" in capsys.readouterr().err


def test_config_log_level_wins(capsys, restore_logger):
    setup_logging_from_config(MgrepConfig(debug=True, log_level="warning"))
    logger.info("hidden info line")
    logger.warning("shown warning line")
    err = capsys.readouterr().err
    assert "hidden info line" not in err
    assert "shown warning line" in err
