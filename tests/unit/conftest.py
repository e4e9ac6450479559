import pytest

ALGORITHM_MODULES = ("test_clustering", "test_false_negatives", "test_finalize")


def pytest_collection_modifyitems(items):
    """Mark tests in this directory as unit tests, and algorithm tests as business logic."""
    for item in items:
        path = str(item.fspath)
        if "/unit/" not in path:
            continue
        item.add_marker(pytest.mark.unit)
        if any(name in path for name in ALGORITHM_MODULES):
            item.add_marker(pytest.mark.business_logic)
