import pytest

from toonmu_backend.app.state import JobStore

from .fakes import FakeBlobStore


@pytest.fixture
def job_store():
    return JobStore.from_url("sqlite://")


@pytest.fixture
def blobs():
    return FakeBlobStore()
