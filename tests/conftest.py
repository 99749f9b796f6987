import pytest

from monerod_exporter.client import InfoResponse

from .helpers import INFO_FIELDS, FakeClient


@pytest.fixture
def make_info():
    def _make(**overrides):
        return InfoResponse(**{**INFO_FIELDS, **overrides})

    return _make


@pytest.fixture
def make_client(make_info):
    def _make(info=None, headers=(), errors=None):
        return FakeClient(info or make_info(), headers=headers, errors=errors)

    return _make
