"""
Tests for size accounting and verification.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from fakes import FakeDockerClient, FakeHost, make_container, make_image, make_network, make_volume
from pxclean.models import CommandResult
from pxclean.sizing import (
    SizeAccountant,
    format_bytes,
    parse_size,
    recorded_total,
    sort_descending,
    verify_freed,
)


class TestVerifyFreed:
    def test_exact_match(self):
        for value in (0, 1, 1000, 10**12):
            assert verify_freed(value, value)

    def test_within_default_tolerance(self):
        assert verify_freed(1000, 950)
        assert verify_freed(1000, 1050)

    def test_outside_default_tolerance(self):
        assert not verify_freed(1000, 900)
        assert not verify_freed(1000, 1100)

    def test_zero_prediction(self):
        assert verify_freed(0, 0)
        assert verify_freed(0, 5000)
        assert not verify_freed(0, -1)

    def test_custom_tolerance(self):
        assert verify_freed(1000, 800, tolerance=0.25)


class TestFormatBytes:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (0, "0 B"),
            (-5, "0 B"),
            (512, "512 B"),
            (1024, "1 KB"),
            (1536, "1.5 KB"),
            (1024**2, "1 MB"),
            (int(2.5 * 1024**3), "2.5 GB"),
            (1024**4, "1 TB"),
        ],
    )
    def test_format(self, value, expected):
        assert format_bytes(value) == expected


class TestParseSize:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("2048", 2048),
            ("512B", 512),
            ("1KB", 1024),
            ("1.5 GB", int(1.5 * 1024**3)),
            ("10MiB", 10 * 1024**2),
            ("2tb", 2 * 1024**4),
        ],
    )
    def test_parse(self, text, expected):
        assert parse_size(text) == expected

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_size("lots")


class TestSortAndTotals:
    def test_sort_descending_is_stable(self):
        a, b, c = make_image("a", size=5), make_image("b", size=10), make_image("c", size=5)
        assert sort_descending([a, b, c]) == [b, a, c]

    def test_recorded_total(self):
        assert recorded_total([make_image("a", size=5), make_volume("v", size=7)]) == 12


class TestSizeAccountant:
    """Test per-kind size queries and fallbacks."""

    def test_container_and_image_sizes_from_docker(self):
        client = FakeDockerClient(
            containers=[make_container("c1", size=300)], images=[make_image("i1", size=900)]
        )
        sizer = SizeAccountant(docker_client=client)

        assert asyncio.run(sizer.size_of(make_container("c1"))) == 300
        assert asyncio.run(sizer.size_of(make_image("i1"))) == 900

    def test_docker_failure_falls_back_to_prior_size(self):
        client = FakeDockerClient()
        client.container_size = AsyncMock(side_effect=RuntimeError("boom"))
        client.image_size = AsyncMock(side_effect=RuntimeError("boom"))
        sizer = SizeAccountant(docker_client=client)

        assert asyncio.run(sizer.size_of(make_container("c1", size=77))) == 77
        assert asyncio.run(sizer.size_of(make_image("i1", size=88))) == 88

    def test_volume_size_from_du(self):
        volume = make_volume("data", mount_point="/srv/data")
        host = FakeHost(outputs={("du", "-sb", "/srv/data"): CommandResult("4096\t/srv/data\n", "", 0)})
        sizer = SizeAccountant(host=host)

        assert asyncio.run(sizer.size_of(volume)) == 4096

    def test_volume_du_failure_is_zero(self):
        volume = make_volume("data", size=123)
        sizer = SizeAccountant(host=FakeHost())
        assert asyncio.run(sizer.size_of(volume)) == 0

    def test_volume_unparseable_du_is_zero(self):
        volume = make_volume("data", mount_point="/srv/data")
        host = FakeHost(outputs={("du", "-sb", "/srv/data"): CommandResult("garbage", "", 0)})
        assert asyncio.run(SizeAccountant(host=host).size_of(volume)) == 0

    def test_network_is_zero(self):
        host = FakeHost()
        sizer = SizeAccountant(host=host)
        assert asyncio.run(sizer.size_of(make_network("n1"))) == 0
        assert host.commands == []

    def test_total_size_is_sum_of_parts(self):
        client = FakeDockerClient(
            containers=[make_container("c1", size=10)], images=[make_image("i1", size=20)]
        )
        volume = make_volume("v", mount_point="/v")
        host = FakeHost(outputs={("du", "-sb", "/v"): CommandResult("30 /v", "", 0)})
        sizer = SizeAccountant(docker_client=client, host=host)
        resources = [make_container("c1"), make_image("i1"), volume, make_network("n")]

        total = asyncio.run(sizer.total_size(resources))
        parts = [asyncio.run(sizer.size_of(r)) for r in resources]
        assert total == sum(parts) == 60

    def test_refresh_sizes_keeps_order(self):
        client = FakeDockerClient(images=[make_image("a", size=1), make_image("b", size=2)])
        sizer = SizeAccountant(docker_client=client)
        refreshed = asyncio.run(sizer.refresh_sizes([make_image("b"), make_image("a")]))
        assert [(r.id, r.size_bytes) for r in refreshed] == [("b", 2), ("a", 1)]

    def test_disk_free_failure_is_none(self):
        host = FakeHost()
        host.disk_free = AsyncMock(side_effect=OSError("df failed"))
        assert asyncio.run(SizeAccountant(host=host).disk_free()) is None

    def test_disk_free_without_host(self):
        assert asyncio.run(SizeAccountant().disk_free()) is None

    def test_verify_uses_configured_tolerance(self):
        sizer = SizeAccountant(tolerance=0.2)
        assert sizer.verify_freed(1000, 850)
        assert not sizer.verify_freed(1000, 850, tolerance=0.1)
