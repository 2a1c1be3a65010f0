"""
Unit tests for Pydantic data models.

Tests notification decoding from the wire format, payload/artifact helpers
and PipelineConfig constraints.
"""

import pytest
from datetime import datetime
from pydantic import ValidationError

from conduit.core.models import (
    Artifact,
    Notification,
    Payload,
    PipelineConfig,
)

from conftest import make_notification, s3_event_record


class TestNotification:
    """Tests for Notification model"""

    def test_parse_wire_record(self):
        """Test that camelCase wire fields populate the model"""
        notification = Notification.model_validate(s3_event_record("ingress", "file.txt"))

        assert notification.event_version == "2.1"
        assert notification.event_source == "aws:s3"
        assert notification.aws_region == "us-east-1"
        assert notification.event_name == "ObjectCreated:Put"
        assert isinstance(notification.event_time, datetime)
        assert notification.bucket == "ingress"
        assert notification.key == "file.txt"
        assert notification.s3.object.e_tag == "2d21a73d66fe9a154b3e7e1442e82c1c"
        assert notification.s3.object.size == 5
        assert notification.receipt_handle == ""

    def test_key_is_url_decoded(self):
        """Test that S3's URL-encoded keys are decoded for fetching"""
        notification = Notification.model_validate(s3_event_record(key="reports/q1+summary%282%29.txt"))
        assert notification.s3.object.key == "reports/q1+summary%282%29.txt"
        assert notification.key == "reports/q1 summary(2).txt"

    def test_missing_bucket_name(self):
        """Test that an event without a bucket name is rejected"""
        record = s3_event_record()
        del record["s3"]["bucket"]["name"]
        with pytest.raises(ValidationError) as exc_info:
            Notification.model_validate(record)
        assert "name" in str(exc_info.value)

    def test_with_delivery_annotates_copy(self):
        """Test that with_delivery returns an annotated copy"""
        original = Notification.model_validate(s3_event_record())
        annotated = original.with_delivery("receipt-abc", "msg-42")

        assert annotated.receipt_handle == "receipt-abc"
        assert annotated.message_id == "msg-42"
        assert original.receipt_handle == ""
        assert annotated.key == original.key

    def test_notification_is_immutable(self):
        """Test that a notification cannot be altered in place"""
        notification = make_notification()
        with pytest.raises(ValidationError):
            notification.receipt_handle = "other"


class TestPayloadAndArtifact:
    """Tests for Payload and Artifact models"""

    def test_payload_text(self):
        payload = Payload(notification=make_notification(), data=b"hello")
        assert payload.text == "hello"

    def test_to_artifact_keeps_back_reference(self):
        notification = make_notification()
        payload = Payload(notification=notification, data=b"hello")
        artifact = payload.to_artifact("out-file.txt", "FOO hello")

        assert artifact.key == "out-file.txt"
        assert artifact.notification == notification

    def test_artifact_body_encodes_text(self):
        artifact = Artifact(key="k", content="héllo", notification=make_notification())
        assert artifact.body() == "héllo".encode("utf-8")

    def test_artifact_body_passes_bytes_through(self):
        artifact = Artifact(key="k", content=b"\x00\x01", notification=make_notification())
        assert artifact.body() == b"\x00\x01"

    def test_empty_artifact_key(self):
        """Test that an empty destination key is rejected"""
        with pytest.raises(ValidationError) as exc_info:
            Artifact(key="", content="x", notification=make_notification())
        assert "key" in str(exc_info.value)


class TestPipelineConfig:
    """Tests for PipelineConfig model"""

    def test_defaults(self):
        config = PipelineConfig(queue_url="q", egress_bucket="egress")
        assert config.batch_size == 10
        assert config.poll_frequency == 3000
        assert config.visibility_timeout == 10
        assert config.concurrency == 1
        assert config.max_in_flight == 0
        assert config.empty_result_policy == "skip"
        assert config.quarantine_bucket is None

    @pytest.mark.parametrize("field", ["batch_size", "poll_frequency", "visibility_timeout", "concurrency"])
    def test_numeric_options_must_be_positive(self, field):
        with pytest.raises(ValidationError) as exc_info:
            PipelineConfig(queue_url="q", egress_bucket="egress", **{field: 0})
        assert field in str(exc_info.value)

    def test_empty_locators(self):
        with pytest.raises(ValidationError):
            PipelineConfig(queue_url="", egress_bucket="egress")
        with pytest.raises(ValidationError):
            PipelineConfig(queue_url="q", egress_bucket="")

    def test_invalid_empty_result_policy(self):
        with pytest.raises(ValidationError) as exc_info:
            PipelineConfig(queue_url="q", egress_bucket="egress", empty_result_policy="drop")
        assert "empty_result_policy" in str(exc_info.value)

    @pytest.mark.parametrize("grace", [float("inf"), float("nan"), -1.0])
    def test_shutdown_grace_must_be_finite(self, grace):
        with pytest.raises(ValidationError) as exc_info:
            PipelineConfig(queue_url="q", egress_bucket="egress", shutdown_grace=grace)
        assert "shutdown_grace" in str(exc_info.value)

    def test_config_is_immutable(self):
        config = PipelineConfig(queue_url="q", egress_bucket="egress")
        with pytest.raises(ValidationError):
            config.batch_size = 5

    def test_poll_interval_in_seconds(self):
        config = PipelineConfig(queue_url="q", egress_bucket="egress", poll_frequency=250)
        assert config.poll_interval == pytest.approx(0.25)

    def test_lane_start_delays_are_staggered(self):
        """Test that lane i starts i * F / C after lane 0"""
        config = PipelineConfig(
            queue_url="q", egress_bucket="egress", poll_frequency=1000, concurrency=4
        )
        assert config.lane_start_delays() == pytest.approx([0.0, 0.25, 0.5, 0.75])

    def test_single_lane_starts_immediately(self):
        config = PipelineConfig(queue_url="q", egress_bucket="egress")
        assert config.lane_start_delays() == [0.0]
