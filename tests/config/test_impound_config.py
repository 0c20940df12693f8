"""
Tests for impound_config: defaults, override layering, validation and the
config -> kernel bridges.
"""

import pytest
import yaml

from impound_config import get_active_config
from impound_config.bridges import (
    build_release_workflow,
    build_retry_policy,
    build_sms_gateway,
)
from impound_config.loader import compute_checksum, load_yaml_file, merge
from impound_config.schema import RetryConfig, SmsConfig
from impound_kernel.db.engine import reset_engine
from impound_kernel.domain.dtos import InspectionIntake, Principal
from impound_kernel.services.sms_gateway import SmsGateway


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_packaged_defaults(self):
        config = get_active_config(environ={})

        assert config.store.database_url == "sqlite:///impound.db"
        assert config.retry.max_attempts == 3
        assert config.retry.max_conflict_retries == 5
        assert config.sms.enabled
        assert config.sms.endpoint.startswith("https://")
        assert config.sms.api_key == ""
        assert config.notification.notify_in_background is False
        assert len(config.checksum) == 64

    def test_config_trace_logged(self, captured_logs):
        get_active_config(environ={"IMPOUND_SMS_API_KEY": "secret"})

        trace = [r for r in captured_logs() if r["message"] == "IMPOUND_CONFIG_TRACE"]
        assert trace
        assert trace[0]["sms_api_key_set"] is True
        assert "secret" not in str(trace)


class TestOverrides:
    def test_override_file(self, tmp_path):
        path = write_yaml(tmp_path / "site.yaml", {
            "retry": {"max_attempts": 7},
            "notification": {"notify_in_background": True},
        })

        config = get_active_config(path, environ={})

        assert config.retry.max_attempts == 7
        assert config.retry.base_delay_seconds == 0.05
        assert config.notification.notify_in_background is True

    def test_environment_wins_over_file(self, tmp_path):
        path = write_yaml(tmp_path / "site.yaml", {"store": {"database_url": "sqlite:///file.db"}})

        config = get_active_config(
            path,
            environ={
                "IMPOUND_DATABASE_URL": "sqlite:///env.db",
                "IMPOUND_SMS_API_KEY": "k-123",
            },
        )

        assert config.store.database_url == "sqlite:///env.db"
        assert config.sms.api_key == "k-123"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml", environ={})

    def test_merge_is_section_wise(self):
        merged = merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}, "b": 4})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 4}


class TestValidation:
    @pytest.mark.parametrize(
        "override,key",
        [
            ({"retry": {"max_attempts": 0}}, "retry.max_attempts"),
            ({"retry": {"max_attempts": "3"}}, "retry.max_attempts"),
            ({"sms": {"endpoint": "ftp://x"}}, "sms.endpoint"),
            ({"sms": {"timeout_seconds": 0}}, "sms.timeout_seconds"),
            ({"store": {"database_url": ""}}, "store.database_url"),
            ({"notification": {"notify_in_background": "yes"}}, "notification.notify_in_background"),
        ],
    )
    def test_invalid_values(self, tmp_path, override, key):
        path = write_yaml(tmp_path / "bad.yaml", override)
        with pytest.raises(ValueError, match=key):
            get_active_config(path, environ={})

    def test_disabled_sms_needs_no_endpoint(self, tmp_path):
        path = write_yaml(tmp_path / "off.yaml", {"sms": {"enabled": False, "endpoint": ""}})
        assert get_active_config(path, environ={}).sms.enabled is False

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_yaml_file(path)


def test_checksum_redacts_api_key():
    a = compute_checksum({"sms": {"api_key": "one"}})
    b = compute_checksum({"sms": {"api_key": "two"}})
    c = compute_checksum({"sms": {"api_key": ""}})
    assert a == b
    assert a != c


class TestBridges:
    def test_retry_policy(self):
        policy = build_retry_policy(RetryConfig(max_attempts=4, max_conflict_retries=9))
        assert policy.max_attempts == 4
        assert policy.max_conflict_retries == 9

    def test_sms_gateway(self):
        gateway = build_sms_gateway(SmsConfig(endpoint="https://sms.test/send", api_key="k"))
        assert isinstance(gateway, SmsGateway)
        assert gateway.api_key == "k"
        assert build_sms_gateway(SmsConfig(endpoint="", enabled=False)) is None

    def test_default_gateway_blocking_bound(self):
        gateway = build_sms_gateway(get_active_config(environ={}).sms)
        # 2 attempts x 10s timeout, plus one backoff of at most 2 x 0.5s.
        assert gateway.max_blocking_seconds == 21.0

    def test_build_release_workflow(self, tmp_path, principal):
        path = write_yaml(tmp_path / "stack.yaml", {
            "store": {"database_url": f"sqlite:///{tmp_path / 'stack.db'}"},
            "sms": {"enabled": False},
        })
        stack = build_release_workflow(get_active_config(path, environ={}))
        try:
            assert stack.dispatcher is None
            intake = InspectionIntake(
                serial_number="SN-STACK",
                drugshop_name="Shop",
                boxes_impounded=2,
                impounded_by="Officer",
                impounded_on=None,
                send_sms=False,
            )
            outcome = stack.inspections.record_inspection(intake, Principal(uid="u"))
            assert outcome.inspection.version == 0
        finally:
            reset_engine()

    def test_inline_sms_logs_blocking_bound(self, tmp_path, captured_logs):
        path = write_yaml(tmp_path / "inline.yaml", {
            "store": {"database_url": f"sqlite:///{tmp_path / 'inline.db'}"},
        })
        stack = build_release_workflow(get_active_config(path, environ={}))
        try:
            inline = [r for r in captured_logs() if r["message"] == "sms_inline_dispatch"]
            assert inline[0]["max_blocking_seconds"] == 21.0
        finally:
            stack.dispatcher.shutdown()
            reset_engine()
