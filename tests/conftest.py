"""
Test configuration and fixtures for Kollektiv tests.
"""
import pytest

from kollektiv.core.file_storage import LocalDirectoryStorage
from kollektiv.core.category import Category


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-data"


@pytest.fixture
def storage(tmp_path):
    """Fixture providing local storage rooted in a temporary directory."""
    return LocalDirectoryStorage(str(tmp_path / "root"))


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def sample_categories():
    """
    Two roots with children:

        Root1 (r1)
          Child (c1)
          Other (c2)
        Root2 (r2)
          Leaf (l1)
    """
    return [
        Category(id="r1", name="Root1", order=0),
        Category(id="r2", name="Root2", order=1),
        Category(id="c1", name="Child", parent_id="r1", order=0),
        Category(id="c2", name="Other", parent_id="r1", order=1),
        Category(id="l1", name="Leaf", parent_id="r2", order=0),
    ]
