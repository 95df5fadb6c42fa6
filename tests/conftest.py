import logging
from pathlib import Path

import pytest


@pytest.fixture
def requires_symlinks(tmp_path: Path) -> None:
    probe_source = tmp_path / ".probe-source"
    probe_link = tmp_path / ".probe-link"
    probe_source.write_text("probe", encoding="utf-8")
    try:
        probe_link.symlink_to(probe_source)
    except (OSError, NotImplementedError):
        pytest.skip("symbolic links are not available on this platform")
    finally:
        probe_link.unlink(missing_ok=True)
        probe_source.unlink(missing_ok=True)


@pytest.fixture(autouse=True)
def reset_dotlink_logger():
    yield
    logger = logging.getLogger("dotlink")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
