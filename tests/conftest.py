import os
import sys

import pytest


def pytest_sessionstart(session):
    # make the storesync package importable when pytest runs from the repo root
    project_root = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.abspath(os.path.join(project_root, os.pardir))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


@pytest.fixture
def fake_surecart():
    from fakes import FakeSureCart
    return FakeSureCart()


@pytest.fixture
def fake_wp():
    from fakes import FakeWordPress
    return FakeWordPress()
