"""
Core configuration
"""

import pytest
import pytest_asyncio
from docker.errors import DockerException
from testcontainers.postgres import PostgresContainer

from keygroups.config.settings import Settings


@pytest_asyncio.fixture(scope="session", params=["sqlite", "postgres"])
def database_container(request, tmp_path_factory):
    if request.param == "sqlite":
        yield {
            "database_type": "sqlite",
            "database_db": str(
                tmp_path_factory.mktemp("database") / "keygroups.db"
            ),
        }
        return

    try:
        container = PostgresContainer("postgres:16-alpine")
        container.start()
    except DockerException as e:
        pytest.skip(f"No docker daemon for the postgres container: {e}")

    try:
        yield {
            "database_type": "postgres",
            "database_user": container.username,
            "database_password": container.password,
            "database_port": container.get_exposed_port(container.port),
            "database_host": container.get_container_host_ip(),
            "database_db": container.dbname,
        }
    finally:
        container.stop()


@pytest_asyncio.fixture(scope="session")
def server_settings(database_container):
    yield Settings(
        **database_container,
        database_echo=False,
        address_domain="keygroups-tests",
    )


@pytest_asyncio.fixture(scope="session")
def database(server_settings: Settings):
    manager = server_settings.sync_manager()
    manager.create_all()
    yield
    manager.drop_all()
