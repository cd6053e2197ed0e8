"""
Tests for protection and kind filtering.
"""

import pytest

from fakes import make_container, make_image, make_network, make_volume
from pxclean.filters import ResourceFilter, filter_resources, is_protected, protected_resources
from pxclean.models import ResourceKind


@pytest.fixture
def resources():
    return [
        make_container("c1", name="web-1"),
        make_container("c2", name="web-2", tags=["keep"]),
        make_container("c3", name="db"),
        make_image("sha256:aaa", name="nginx:1.25"),
        make_volume("db-data"),
        make_network("net1", name="web.frontend"),
    ]


class TestIsProtected:
    """Test individual pattern forms."""

    def test_exact_name(self, resources):
        assert is_protected(resources[2], ["db"])
        assert not is_protected(resources[4], ["db"])

    def test_glob_anchored_to_full_name(self, resources):
        assert is_protected(resources[0], ["web-*"])
        assert not is_protected(resources[2], ["web-*"])
        assert not is_protected(resources[0], ["eb-*"])

    def test_glob_in_middle(self, resources):
        assert is_protected(resources[3], ["ng*:1.*"])

    def test_dot_is_literal(self, resources):
        network = resources[5]
        assert is_protected(network, ["web.*"])
        assert not is_protected(make_network("n", name="webXfrontend"), ["web.frontend"])

    def test_tag_pattern(self, resources):
        assert is_protected(resources[1], ["tag:keep"])
        assert not is_protected(resources[0], ["tag:keep"])

    def test_id_pattern(self, resources):
        assert is_protected(resources[3], ["id:sha256:aaa"])
        assert not is_protected(resources[3], ["id:sha256"])

    def test_no_patterns(self, resources):
        assert not any(is_protected(r, []) for r in resources)


class TestFilterResources:
    def test_protected_resources_excluded(self, resources):
        patterns = ["web-*", "tag:keep", "id:net1"]
        kept = filter_resources(resources, patterns)

        assert all(not is_protected(r, patterns) for r in kept)
        assert [r.id for r in kept] == ["c3", "sha256:aaa", "db-data"]

    def test_every_match_absent_and_every_non_match_present(self, resources):
        for patterns in (["db"], ["*"], ["*-data", "nginx:*"], ["tag:none"]):
            kept = filter_resources(resources, patterns)
            for r in resources:
                assert (r in kept) != is_protected(r, patterns)

    def test_allowed_kinds(self, resources):
        kept = filter_resources(resources, [], [ResourceKind.VOLUME, ResourceKind.NETWORK])
        assert [r.kind for r in kept] == [ResourceKind.VOLUME, ResourceKind.NETWORK]

    def test_empty_kinds_means_all(self, resources):
        assert filter_resources(resources) == resources

    def test_order_preserved(self, resources):
        reversed_input = list(reversed(resources))
        assert filter_resources(reversed_input, ["db"]) == [
            r for r in reversed_input if r.name != "db"
        ]

    def test_protected_resources_lists_exemptions(self, resources):
        assert [r.id for r in protected_resources(resources, ["tag:keep", "db"])] == ["c2", "c3"]


class TestResourceFilter:
    def test_add_pattern_strips_and_dedupes(self):
        resource_filter = ResourceFilter()
        resource_filter.add_pattern(" web-* ")
        resource_filter.add_pattern("web-*")
        resource_filter.add_pattern("   ")
        assert resource_filter.patterns == ["web-*"]

    def test_remove_pattern(self):
        resource_filter = ResourceFilter(["a", "b"])
        resource_filter.remove_pattern("a")
        resource_filter.remove_pattern("missing")
        assert resource_filter.patterns == ["b"]

    def test_patterns_is_a_copy(self):
        resource_filter = ResourceFilter(["a"])
        resource_filter.patterns.append("b")
        assert resource_filter.patterns == ["a"]

    def test_is_kind_allowed(self):
        assert ResourceFilter().is_kind_allowed(ResourceKind.IMAGE)
        restricted = ResourceFilter(allowed_kinds=[ResourceKind.CONTAINER])
        assert restricted.is_kind_allowed(ResourceKind.CONTAINER)
        assert not restricted.is_kind_allowed(ResourceKind.IMAGE)

    def test_apply(self, resources):
        resource_filter = ResourceFilter(["db*"], [ResourceKind.CONTAINER, ResourceKind.VOLUME])
        assert [r.id for r in resource_filter.apply(resources)] == ["c1", "c2"]
