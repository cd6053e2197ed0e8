"""Shared fixtures for the pxclean test suite."""

import logging

import pytest

from fakes import FakeDockerClient, make_container, make_image, make_network, make_volume
from pxclean.models import ContainerStatus


@pytest.fixture(autouse=True)
def _isolate_pxclean_logger():
    """Drop handlers installed by setup_logging so tests do not leak them."""
    yield
    root = logging.getLogger("pxclean")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture
def scenario_client():
    """Two stopped containers on images a/b, one running on c, four images."""
    return FakeDockerClient(
        containers=[
            make_container("c1", ContainerStatus.EXITED, image_id="a", volumes=["data1"]),
            make_container("c2", ContainerStatus.STOPPED, image_id="b"),
            make_container("c3", ContainerStatus.RUNNING, image_id="c", volumes=["data3"]),
        ],
        images=[
            make_image("a", size=100),
            make_image("b", size=200),
            make_image("c", size=300),
            make_image("d", size=400),
        ],
        volumes=[make_volume("data1"), make_volume("data3"), make_volume("orphan")],
        networks=[
            make_network("n-bridge", name="bridge"),
            make_network("n-host", name="host", driver="host"),
            make_network("n-none", name="none", driver="null"),
            make_network("n-app", name="app-net", connected=["c3"]),
            make_network("n-old", name="old-net"),
        ],
    )
