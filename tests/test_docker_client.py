"""
Tests for the docker CLI client and its inspect converters.
"""

import asyncio
import json

import pytest

from fakes import FakeHost, make_image
from pxclean.clients.docker import (
    UNTAGGED_IMAGE,
    DockerClient,
    classify_error,
    container_from_inspect,
    image_from_inspect,
    network_from_inspect,
    parse_docker_time,
    volume_from_inspect,
)
from pxclean.exceptions import (
    ConnectivityError,
    RemovalError,
    ResourceInUseError,
    ResourceNotFoundError,
    SizeEstimationError,
)
from pxclean.models import CommandResult, ContainerStatus, ResourceKind

CONTAINER_INSPECT = {
    "Id": "abc123",
    "Name": "/web",
    "Created": "2024-03-01T10:00:00.123456789Z",
    "Image": "sha256:img",
    "State": {"Status": "exited", "FinishedAt": "2024-03-02T10:00:00Z"},
    "Config": {"Labels": {"com.example.role": "frontend"}},
    "Mounts": [
        {"Type": "volume", "Name": "web-data"},
        {"Type": "bind", "Source": "/etc/hosts"},
    ],
    "SizeRw": 4096,
}

IMAGE_INSPECT = {
    "Id": "sha256:img",
    "RepoTags": ["nginx:1.25"],
    "Size": 187000000,
    "Created": "2024-01-01T00:00:00Z",
    "Config": {"Labels": None},
}


def ok(stdout=""):
    return CommandResult(stdout, "", 0)


def fail(stderr, code=1):
    return CommandResult("", stderr, code)


def client_with(outputs, docker_host=None):
    host = FakeHost(outputs=outputs)
    return DockerClient(host=host, docker_host=docker_host), host


class TestParseDockerTime:
    def test_nanoseconds(self):
        parsed = parse_docker_time("2024-03-01T10:00:00.123456789Z")
        assert parsed.microsecond == 123456
        assert parsed.utcoffset().total_seconds() == 0

    def test_zero_time(self):
        assert parse_docker_time("0001-01-01T00:00:00Z") is None
        assert parse_docker_time("") is None
        assert parse_docker_time("yesterday") is None


class TestClassifyError:
    @pytest.mark.parametrize(
        "message,code,expected",
        [
            ("Cannot connect to the Docker daemon at unix:///var/run/docker.sock", 1, ConnectivityError),
            ("docker: command not found", 127, ConnectivityError),
            ("conflict: unable to remove repository reference (must force)", 1, ResourceInUseError),
            ("Error response from daemon: remove data: volume is in use", 1, ResourceInUseError),
            ("error while removing network: network app has active endpoints", 1, ResourceInUseError),
            ("Error: No such container: abc", 1, ResourceNotFoundError),
            ("Error response from daemon: driver failed", 1, RemovalError),
            ("", 3, RemovalError),
        ],
    )
    def test_classification(self, message, code, expected):
        assert type(classify_error(message, code)) is expected


class TestConverters:
    def test_container(self):
        container = container_from_inspect(CONTAINER_INSPECT)

        assert container.kind is ResourceKind.CONTAINER
        assert container.name == "web"
        assert container.details.status is ContainerStatus.EXITED
        assert container.details.image_id == "sha256:img"
        assert container.details.mounted_volume_names == ("web-data",)
        assert container.size_bytes == 4096
        assert container.tags == {"com.example.role"}
        assert container.last_used_at.day == 2

    @pytest.mark.parametrize(
        "state,expected",
        [("running", ContainerStatus.RUNNING), ("created", ContainerStatus.STOPPED), ("paused", ContainerStatus.STOPPED)],
    )
    def test_container_status_mapping(self, state, expected):
        data = dict(CONTAINER_INSPECT, State={"Status": state})
        assert container_from_inspect(data).details.status is expected

    def test_image(self):
        image = image_from_inspect(IMAGE_INSPECT)
        assert image.name == "nginx:1.25"
        assert (image.details.repository, image.details.tag) == ("nginx", "1.25")
        assert image.size_bytes == 187000000
        assert image.tags == frozenset()

    def test_untagged_image(self):
        image = image_from_inspect({"Id": "sha256:dangling", "RepoTags": []})
        assert image.name == UNTAGGED_IMAGE
        assert image.details.repository == "<none>"

    def test_image_with_registry_port(self):
        image = image_from_inspect({"Id": "x", "RepoTags": ["registry:5000/app:2.0"]})
        assert (image.details.repository, image.details.tag) == ("registry:5000/app", "2.0")

    def test_volume(self):
        volume = volume_from_inspect(
            {"Name": "data", "Mountpoint": "/var/lib/docker/volumes/data/_data", "Labels": None}
        )
        assert volume.id == volume.name == "data"
        assert volume.details.mount_point.endswith("/_data")

    def test_network(self):
        network = network_from_inspect(
            {"Id": "n1", "Name": "app-net", "Driver": "bridge", "Containers": {"abc": {}, "def": {}}}
        )
        assert network.details.connected_container_ids == ("abc", "def")
        assert network.details.driver == "bridge"


class TestDockerClient:
    def test_connect(self):
        client, host = client_with(
            {("docker", "version", "--format", "{{.Server.Version}}"): ok("24.0.7\n")}
        )
        asyncio.run(client.connect())
        assert asyncio.run(client.is_connected())

    def test_connect_failure(self):
        client, _ = client_with({})
        with pytest.raises(ConnectivityError):
            asyncio.run(client.connect())
        assert not asyncio.run(client.is_connected())

    def test_docker_host_flag(self):
        client, host = client_with(
            {("docker", "-H", "tcp://10.0.0.5:2375", "rm", "abc"): ok()},
            docker_host="tcp://10.0.0.5:2375",
        )
        asyncio.run(client.remove_container("abc"))
        assert host.commands == [["docker", "-H", "tcp://10.0.0.5:2375", "rm", "abc"]]

    def test_list_containers(self):
        client, host = client_with(
            {
                ("docker", "ps", "-q", "--no-trunc", "-a"): ok("abc123\nabc123\n"),
                ("docker", "container", "inspect", "--size", "abc123"): ok(
                    json.dumps([CONTAINER_INSPECT])
                ),
            }
        )
        containers = asyncio.run(client.list_containers())
        assert [c.id for c in containers] == ["abc123"]

    def test_list_empty_skips_inspect(self):
        client, host = client_with({("docker", "volume", "ls", "-q"): ok("")})
        assert asyncio.run(client.list_volumes()) == []
        assert len(host.commands) == 1

    def test_vanished_objects_tolerated(self):
        client, _ = client_with(
            {
                ("docker", "image", "ls", "-q", "--no-trunc"): ok("sha256:img\nsha256:gone\n"),
                ("docker", "image", "inspect", "sha256:img", "sha256:gone"): CommandResult(
                    json.dumps([IMAGE_INSPECT]), "Error: No such image: sha256:gone", 1
                ),
            }
        )
        assert [i.id for i in asyncio.run(client.list_images())] == ["sha256:img"]

    def test_listing_failure(self):
        client, _ = client_with(
            {("docker", "network", "ls", "-q", "--no-trunc"): fail("Cannot connect to the Docker daemon")}
        )
        with pytest.raises(ConnectivityError):
            asyncio.run(client.list_networks())

    def test_remove_dispatch(self):
        client, host = client_with({("docker", "rmi", "sha256:img"): ok()})
        asyncio.run(client.remove(make_image("sha256:img")))
        assert host.commands == [["docker", "rmi", "sha256:img"]]

    def test_remove_in_use(self):
        client, _ = client_with(
            {("docker", "volume", "rm", "data"): fail("Error response from daemon: volume is in use - [abc]")}
        )
        with pytest.raises(ResourceInUseError):
            asyncio.run(client.remove_volume("data"))

    def test_image_size(self):
        client, _ = client_with(
            {("docker", "image", "inspect", "--format", "{{.Size}}", "sha256:img"): ok("1024\n")}
        )
        assert asyncio.run(client.image_size("sha256:img")) == 1024

    def test_container_size_no_value(self):
        client, _ = client_with(
            {
                ("docker", "container", "inspect", "--size", "--format", "{{.SizeRw}}", "abc"): ok(
                    "<no value>\n"
                )
            }
        )
        assert asyncio.run(client.container_size("abc")) == 0

    def test_unparseable_size(self):
        client, _ = client_with(
            {("docker", "image", "inspect", "--format", "{{.Size}}", "x"): ok("huge")}
        )
        with pytest.raises(SizeEstimationError):
            asyncio.run(client.image_size("x"))
