"""
Tests for configuration loading and validation.
"""

import json

import pytest
import yaml

from pxclean.config import ConfigError, ValidationError, load_config
from pxclean.config.validators import (
    parse_resource_kinds,
    validate_cron,
    validate_timezone,
    validate_token,
    validate_webhook_url,
)
from pxclean.models import ResourceKind, RunMode


@pytest.fixture
def yaml_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "proxmox": {"host": "pve.local", "token": "root@pam:secret", "node_id": "pve1"},
                "cleanup": {
                    "dry_run": True,
                    "resource_types": ["containers", "images"],
                    "protected_patterns": ["db-*", "tag:keep"],
                },
                "schedule": {"enabled": True, "cron_expression": "0 3 * * *"},
            }
        )
    )
    return path


class TestLoadConfig:
    def test_defaults(self):
        config = load_config(environ={})
        assert config.cleanup.mode is RunMode.DESTRUCTIVE
        assert config.cleanup.resource_types == list(ResourceKind)
        assert config.cleanup.backup_enabled
        assert config.schedule.cron_expression == "0 2 * * *"
        assert not config.proxmox.enabled
        assert not config.notifications.enabled

    def test_yaml_file(self, yaml_config):
        config = load_config(str(yaml_config), environ={})

        assert config.proxmox.enabled
        assert config.proxmox.node_id == "pve1"
        assert config.cleanup.mode is RunMode.PREVIEW
        assert config.cleanup.resource_types == [ResourceKind.CONTAINER, ResourceKind.IMAGE]
        assert config.cleanup.protected_patterns == ["db-*", "tag:keep"]
        assert config.schedule.enabled

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"cleanup": {"backup_enabled": False}}))
        assert not load_config(str(path), environ={}).cleanup.backup_enabled

    def test_precedence(self, yaml_config):
        environ = {"PXCLEAN_DRY_RUN": "false", "PXCLEAN_RESOURCE_TYPES": "volumes"}
        config = load_config(
            str(yaml_config),
            overrides={"cleanup.resource_types": "networks", "cleanup.dry_run": None},
            environ=environ,
        )
        # env beats file, overrides beat env, None overrides are ignored
        assert config.cleanup.mode is RunMode.DESTRUCTIVE
        assert config.cleanup.resource_types == [ResourceKind.NETWORK]

    def test_env_lists(self):
        config = load_config(
            environ={
                "PXCLEAN_PROTECTED_PATTERNS": "web-*, db",
                "PXCLEAN_WEBHOOK_URL": "https://hooks.example.com/x",
                "PXCLEAN_DOCKER_HOST": "tcp://10.0.0.5:2375",
            }
        )
        assert config.cleanup.protected_patterns == ["web-*", "db"]
        assert config.notifications.webhook_url == "https://hooks.example.com/x"
        assert config.cleanup.docker_host == "tcp://10.0.0.5:2375"

    def test_all_resource_types(self):
        config = load_config(overrides={"cleanup.resource_types": "all"}, environ={})
        assert config.cleanup.resource_types == list(ResourceKind)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "missing.yaml"), environ={})

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("cleanup: [unterminated")
        with pytest.raises(ConfigError):
            load_config(str(path), environ={})

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(str(path), environ={})

    @pytest.mark.parametrize(
        "overrides",
        [
            {"cleanup.resource_types": "pods"},
            {"proxmox.token": "not-a-token"},
            {"schedule.cron_expression": "every day"},
            {"schedule.timezone": "Mars/Olympus"},
            {"schedule.max_retries": -1},
            {"notifications.webhook_url": "ftp://example.com"},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValidationError, match="Invalid configuration"):
            load_config(overrides=overrides, environ={})


class TestValidators:
    def test_parse_resource_kinds(self):
        assert parse_resource_kinds("images,container, images") == [
            ResourceKind.IMAGE,
            ResourceKind.CONTAINER,
        ]
        assert parse_resource_kinds([ResourceKind.VOLUME, "all"]) == [
            ResourceKind.VOLUME,
            ResourceKind.CONTAINER,
            ResourceKind.IMAGE,
            ResourceKind.NETWORK,
        ]

    def test_parse_resource_kinds_invalid(self):
        with pytest.raises(ValidationError, match="Invalid resource type"):
            parse_resource_kinds(["images", "pods"])

    def test_validate_token(self):
        assert validate_token("root@pam:secret") == "root@pam:secret"
        for bad in ("", "root:secret", "root@pam", "root@pam:"):
            with pytest.raises(ValidationError):
                validate_token(bad)

    def test_validate_cron(self):
        assert validate_cron(" 0 2 * * * ") == "0 2 * * *"
        with pytest.raises(ValidationError):
            validate_cron("0 25 * * *")

    def test_validate_webhook_url(self):
        assert validate_webhook_url("http://localhost:8080/hook")
        with pytest.raises(ValidationError):
            validate_webhook_url("hooks.example.com")

    def test_validate_timezone(self):
        assert validate_timezone("America/New_York") == "America/New_York"
        with pytest.raises(ValidationError):
            validate_timezone("Nowhere/Special")
