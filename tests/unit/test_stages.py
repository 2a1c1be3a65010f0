"""
Unit tests for the per-record stages: fetch, transform, load and acknowledge.
"""

import pytest

from conduit.core.errors import (
    AckError,
    ConfigError,
    ObjectFetchError,
    TransformError,
    WriteError,
)
from conduit.core.models import Artifact, Payload
from conduit.observability.metrics import REGISTRY
from conduit.streaming.acknowledger import Acknowledger
from conduit.streaming.fetcher import Fetcher
from conduit.streaming.sinks.object_sink import ObjectSink
from conduit.streaming.transform import (
    TransformerAdapter,
    from_emitter,
    load_transform,
    prefix_transform,
)

from conftest import FakeObjectStore, FakeQueue, make_notification


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def payload():
    return Payload(notification=make_notification(), data=b"hello")


class TestFetcher:
    """Tests for Fetcher"""

    def test_fetch_returns_payload(self):
        store = FakeObjectStore()
        store.add("ingress", "file.txt", "hello")
        notification = make_notification()

        payload = Fetcher(store).fetch(notification)

        assert payload.data == b"hello"
        assert payload.notification == notification
        assert store.gets == [("ingress", "file.txt")]

    def test_fetch_uses_decoded_key(self):
        store = FakeObjectStore()
        store.add("ingress", "my report.txt", "x")
        assert Fetcher(store).fetch(make_notification(key="my+report.txt")).data == b"x"

    def test_missing_object(self):
        notification = make_notification(key="absent.txt")
        with pytest.raises(ObjectFetchError) as exc_info:
            Fetcher(FakeObjectStore()).fetch(notification)

        assert exc_info.value.notification == notification
        assert exc_info.value.component == "fetcher"
        assert "absent.txt" in str(exc_info.value)

    def test_non_bytes_content(self):
        """Test that a store returning something other than bytes is a fetch failure"""
        store = FakeObjectStore()
        store.objects[("ingress", "file.txt")] = 42

        with pytest.raises(ObjectFetchError) as exc_info:
            Fetcher(store).fetch(make_notification())
        assert exc_info.value.component == "fetcher"


class TestTransformerAdapter:
    """Tests for TransformerAdapter and transform helpers"""

    def test_prefix_transform(self, payload):
        artifacts = TransformerAdapter(prefix_transform).apply(payload)

        assert len(artifacts) == 1
        assert artifacts[0].key == "out-file.txt"
        assert artifacts[0].content == "FOO hello"
        assert artifacts[0].notification == payload.notification

    def test_none_means_no_artifacts(self, payload):
        assert TransformerAdapter(lambda p: None).apply(payload) == []

    def test_iterable_result(self, payload):
        def split(p):
            for i, part in enumerate(("a", "b", "c")):
                yield p.to_artifact(f"part-{i}", part)

        artifacts = TransformerAdapter(split).apply(payload)
        assert [a.key for a in artifacts] == ["part-0", "part-1", "part-2"]

    def test_transform_called_once(self, payload):
        calls = []

        def transform(p):
            calls.append(p)
            return prefix_transform(p)

        TransformerAdapter(transform).apply(payload)
        assert calls == [payload]

    def test_transform_exception(self, payload):
        def explode(p):
            raise ValueError("bad input")

        with pytest.raises(TransformError) as exc_info:
            TransformerAdapter(explode).apply(payload)

        assert "bad input" in str(exc_info.value)
        assert exc_info.value.notification == payload.notification

    @pytest.mark.parametrize("result", ["text", b"bytes", {"key": "v"}, [1, 2]])
    def test_non_artifact_result(self, payload, result):
        with pytest.raises(TransformError):
            TransformerAdapter(lambda p: result).apply(payload)

    def test_non_callable(self):
        with pytest.raises(TypeError):
            TransformerAdapter("not callable")

    def test_from_emitter(self, payload):
        def split_lines(p, emit):
            emit(p.to_artifact("one", "1"))
            emit(p.to_artifact("two", "2"))

        artifacts = TransformerAdapter(from_emitter(split_lines)).apply(payload)
        assert [a.key for a in artifacts] == ["one", "two"]

    def test_from_emitter_no_emits(self, payload):
        assert TransformerAdapter(from_emitter(lambda p, emit: None)).apply(payload) == []

    @pytest.mark.parametrize(
        "path",
        [
            "conduit.streaming.transform:prefix_transform",
            "conduit.streaming.transform.prefix_transform",
        ],
    )
    def test_load_transform(self, path):
        assert load_transform(path) is prefix_transform

    @pytest.mark.parametrize(
        "path",
        [
            "prefix_transform",
            "conduit.no_such_module:transform",
            "conduit.streaming.transform:missing",
            "conduit.streaming.transform:logger",
        ],
    )
    def test_load_transform_invalid(self, path):
        with pytest.raises(ConfigError):
            load_transform(path)


class TestObjectSink:
    """Tests for ObjectSink"""

    def test_load_writes_artifact(self, payload):
        store = FakeObjectStore()
        artifact = prefix_transform(payload)
        before = sample("conduit_bytes_written_total")

        notification = ObjectSink(store, "egress").load(artifact)

        assert notification == payload.notification
        assert store.puts == [("egress", "out-file.txt", b"FOO hello")]
        assert sample("conduit_bytes_written_total") == before + len(b"FOO hello")

    def test_load_failure(self, payload):
        store = FakeObjectStore()
        store.put_error = lambda bucket, key: PermissionError("access denied")

        with pytest.raises(WriteError) as exc_info:
            ObjectSink(store, "egress").load(prefix_transform(payload))

        assert exc_info.value.component == "loader"
        assert "access denied" in str(exc_info.value)

    def test_reprocessing_is_idempotent(self, payload):
        """Test that a redelivered record rewrites the same object with the same content"""
        store = FakeObjectStore()
        sink = ObjectSink(store, "egress")
        transformer = TransformerAdapter(prefix_transform)

        for _ in range(2):
            for artifact in transformer.apply(payload):
                sink.load(artifact)

        assert store.puts[0] == store.puts[1]
        assert store.objects == {("egress", "out-file.txt"): b"FOO hello"}

    def test_binary_content(self):
        store = FakeObjectStore()
        artifact = Artifact(key="blob.bin", content=b"\x00\xff", notification=make_notification())
        ObjectSink(store, "egress").load(artifact)
        assert store.objects[("egress", "blob.bin")] == b"\x00\xff"

    def test_unencodable_content(self):
        """Test that text which cannot be encoded as UTF-8 is a write failure"""
        store = FakeObjectStore()
        artifact = Artifact(key="bad.txt", content="x\udcff", notification=make_notification())

        with pytest.raises(WriteError) as exc_info:
            ObjectSink(store, "egress").load(artifact)

        assert exc_info.value.notification == artifact.notification
        assert store.puts == []


class TestAcknowledger:
    """Tests for Acknowledger"""

    def test_ack_deletes_by_receipt_handle(self):
        queue = FakeQueue()
        before = sample("conduit_records_acknowledged_total", outcome="loaded")

        Acknowledger(queue).ack(make_notification(receipt_handle="rh-7"))

        assert queue.deleted == ["rh-7"]
        assert sample("conduit_records_acknowledged_total", outcome="loaded") == before + 1

    def test_ack_empty_outcome(self):
        before = sample("conduit_records_acknowledged_total", outcome="empty")
        Acknowledger(FakeQueue()).ack(make_notification(), outcome="empty")
        assert sample("conduit_records_acknowledged_total", outcome="empty") == before + 1

    def test_missing_receipt_handle(self):
        queue = FakeQueue()
        with pytest.raises(AckError):
            Acknowledger(queue).ack(make_notification(receipt_handle=""))
        assert queue.deleted == []

    def test_delete_failure(self):
        queue = FakeQueue()
        queue.delete_error = TimeoutError("queue timed out")

        with pytest.raises(AckError) as exc_info:
            Acknowledger(queue).ack(make_notification())

        assert exc_info.value.component == "acknowledger"
        assert "queue timed out" in str(exc_info.value)
