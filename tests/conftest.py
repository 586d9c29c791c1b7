import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_simsync_logger():
    yield
    logger = logging.getLogger("simsync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
