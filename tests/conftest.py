import io
from unittest.mock import MagicMock, Mock

import pytest
import requests
from rich.console import Console

import tmpmail


def _response(text, status_code=200):
    response = Mock()
    response.text = text
    response.status_code = status_code
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def make_response():
    """Build a fake requests.Response carrying a raw body."""
    return _response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return tmpmail.OneSecMailClient(session=session)


@pytest.fixture
def out():
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def address():
    return tmpmail.Address("abc123", "1secmail.com")
