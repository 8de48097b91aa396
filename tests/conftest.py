import pytest

from filestore.repository import FileRepository, RefreshTokenRepository, UserRepository
from filestore.storage import LocalOwnerStorage


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "metadata.db")


@pytest.fixture
def file_repository(db_path):
    repository = FileRepository(db_path)
    repository.init()
    return repository


@pytest.fixture
def token_repository(db_path):
    repository = RefreshTokenRepository(db_path)
    repository.init()
    return repository


@pytest.fixture
def user_repository(db_path):
    repository = UserRepository(db_path)
    repository.init()
    return repository


@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "private"


@pytest.fixture
def storage(storage_root, file_repository):
    engine = LocalOwnerStorage(str(storage_root), file_repository, max_size_bytes=10_000)
    engine.init()
    return engine
