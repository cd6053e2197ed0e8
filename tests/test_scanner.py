"""
Tests for the resource scanner and the in-use oracle.
"""

import asyncio
import itertools

import pytest

from fakes import FakeDockerClient, make_container, make_image, make_network, make_volume
from pxclean.exceptions import ConnectivityError
from pxclean.models import ContainerStatus, ResourceKind
from pxclean.scanner import RESERVED_NETWORKS, ResourceScanner


def run(coro):
    return asyncio.run(coro)


class TestScanContainers:
    def test_only_stopped_and_exited_are_unused(self):
        statuses = [ContainerStatus.RUNNING, ContainerStatus.STOPPED, ContainerStatus.EXITED]
        # Every combination of up to three containers
        for combo in itertools.product(statuses, repeat=3):
            containers = [make_container(f"c{i}", status) for i, status in enumerate(combo)]
            scanner = ResourceScanner(FakeDockerClient(containers=containers))

            unused = run(scanner.scan_containers())

            expected = {c.id for c in containers if c.details.status is not ContainerStatus.RUNNING}
            assert {c.id for c in unused} == expected
            assert all(c.details.status is not ContainerStatus.RUNNING for c in unused)


class TestScanImages:
    def test_scenario_only_unreferenced_image(self, scenario_client):
        unused = run(ResourceScanner(scenario_client).scan_images())
        assert [i.id for i in unused] == ["d"]

    def test_referenced_image_never_unused(self):
        for image_ids in (["a"], ["a", "b"], ["a", "a", "c"]):
            containers = [
                make_container(f"c{n}", ContainerStatus.EXITED, image_id=image_id)
                for n, image_id in enumerate(image_ids)
            ]
            images = [make_image(i) for i in ("a", "b", "c", "d")]
            unused = run(ResourceScanner(FakeDockerClient(containers, images)).scan_images())

            referenced = {c.details.image_id for c in containers}
            assert referenced.isdisjoint({i.id for i in unused})
            assert {i.id for i in unused} == {"a", "b", "c", "d"} - referenced

    def test_unused_images_have_no_users(self, scenario_client):
        unused = run(ResourceScanner(scenario_client).scan_images())
        assert all(i.details.used_by_container_ids == () for i in unused)


class TestScanVolumes:
    def test_stopped_container_still_uses_volume(self, scenario_client):
        unused = run(ResourceScanner(scenario_client).scan_volumes())
        assert [v.name for v in unused] == ["orphan"]


class TestScanNetworks:
    def test_reserved_and_connected_excluded(self, scenario_client):
        unused = run(ResourceScanner(scenario_client).scan_networks())
        assert [n.name for n in unused] == ["old-net"]

    def test_reserved_names(self):
        assert RESERVED_NETWORKS == {"bridge", "host", "none"}


class TestScan:
    def test_dispatch_by_kind(self, scenario_client):
        scanner = ResourceScanner(scenario_client)
        assert {r.kind for r in run(scanner.scan(ResourceKind.VOLUME))} == {ResourceKind.VOLUME}
        assert {r.id for r in run(scanner.scan(ResourceKind.CONTAINER))} == {"c1", "c2"}

    def test_concurrent_scans(self, scenario_client):
        scanner = ResourceScanner(scenario_client)

        async def scan_all():
            return await asyncio.gather(*(scanner.scan(kind) for kind in ResourceKind))

        containers, images, volumes, networks = run(scan_all())
        assert len(containers) == 2
        assert [i.id for i in images] == ["d"]
        assert [v.id for v in volumes] == ["orphan"]
        assert [n.id for n in networks] == ["n-old"]

    def test_scan_does_not_apply_protection(self):
        client = FakeDockerClient(containers=[make_container("c1", name="db", tags=["keep"])])
        assert len(run(ResourceScanner(client).scan_containers())) == 1


class TestSnapshot:
    def test_snapshot_updated_on_success(self, scenario_client):
        scanner = ResourceScanner(scenario_client)
        run(scanner.scan_containers())
        assert {c.id for c in scanner.container_snapshot} == {"c1", "c2", "c3"}

    def test_failed_listing_keeps_previous_snapshot(self, scenario_client):
        scanner = ResourceScanner(scenario_client)
        run(scanner.scan_containers())
        scenario_client.fail_listing = True

        with pytest.raises(ConnectivityError):
            run(scanner.scan_images())
        assert len(scanner.container_snapshot) == 3

    def test_unexpected_listing_error_becomes_connectivity_error(self):
        client = FakeDockerClient()

        async def broken(include_stopped=True):
            raise RuntimeError("socket closed")

        client.list_containers = broken
        with pytest.raises(ConnectivityError, match="containers"):
            run(ResourceScanner(client).scan_containers())


class TestIsInUse:
    """The oracle must reflect the live state at call time."""

    def test_container_started_after_scan(self, scenario_client):
        scanner = ResourceScanner(scenario_client)
        container = run(scanner.scan_containers())[0]
        scenario_client.containers[container.id] = make_container(
            container.id, ContainerStatus.RUNNING
        )
        assert run(scanner.is_in_use(container))

    def test_stopped_container_not_in_use(self, scenario_client):
        assert not run(ResourceScanner(scenario_client).is_in_use(make_container("c1")))

    def test_image_in_use_by_new_container(self, scenario_client):
        scanner = ResourceScanner(scenario_client)
        image = run(scanner.scan_images())[0]
        assert not run(scanner.is_in_use(image))

        scenario_client.containers["c9"] = make_container("c9", image_id=image.id)
        assert run(scanner.is_in_use(image))

    def test_volume_in_use_by_stopped_container(self, scenario_client):
        scanner = ResourceScanner(scenario_client)
        assert run(scanner.is_in_use(make_volume("data1")))
        assert not run(scanner.is_in_use(make_volume("orphan")))

    def test_network_connected_after_scan(self, scenario_client):
        scanner = ResourceScanner(scenario_client)
        network = run(scanner.scan_networks())[0]
        scenario_client.networks[network.id] = make_network(
            network.id, name=network.name, connected=["c3"]
        )
        assert run(scanner.is_in_use(network))

    def test_reserved_network_always_in_use(self, scenario_client):
        scanner = ResourceScanner(scenario_client)
        assert run(scanner.is_in_use(make_network("whatever", name="bridge")))

    def test_vanished_resources_not_in_use(self):
        scanner = ResourceScanner(FakeDockerClient())
        assert not run(scanner.is_in_use(make_container("gone")))
        assert not run(scanner.is_in_use(make_image("gone")))
        assert not run(scanner.is_in_use(make_volume("gone")))
        assert not run(scanner.is_in_use(make_network("gone", name="gone-net")))

    def test_listing_failure_propagates(self, scenario_client):
        scenario_client.fail_listing = True
        with pytest.raises(ConnectivityError):
            run(ResourceScanner(scenario_client).is_in_use(make_image("d")))
