import pytest


def pytest_collection_modifyitems(items):
    """Mark tests in this directory as integration tests; worker tests spawn processes."""
    for item in items:
        path = str(item.fspath)
        if "/integration/" not in path:
            continue
        item.add_marker(pytest.mark.integration)
        if "test_worker" in path:
            item.add_marker(pytest.mark.slow)
