import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_cli_logging():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in getattr(root, "_bulkinstall_handlers", []):
        root.removeHandler(handler)
        handler.close()
    setattr(root, "_bulkinstall_handlers", [])
    root.setLevel(level)
