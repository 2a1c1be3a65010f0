"""
Transformer adapter.

A transform is any callable taking a Payload and returning an Artifact, None,
or a finite iterable of Artifacts. The adapter calls it exactly once per
payload and hands every artifact to the loader untouched.
"""

import importlib
from typing import Callable, Iterable, List, Optional, Union

from conduit.core.errors import ConfigError, TransformError
from conduit.core.models import Artifact, Payload
from conduit.observability.logger import get_logger, log_operation
from conduit.observability.metrics import MetricsCollector

logger = get_logger(__name__)

TransformResult = Union[Artifact, Iterable[Artifact], None]
TransformFunc = Callable[[Payload], TransformResult]
EmitterFunc = Callable[[Payload, Callable[[Artifact], None]], None]


def _materialize(result: TransformResult) -> List[Artifact]:
    if result is None:
        return []
    if isinstance(result, Artifact):
        return [result]
    if isinstance(result, (str, bytes, dict)):
        raise TypeError(f"Transform returned {type(result).__name__}, expected Artifact(s)")

    artifacts = list(result)
    for item in artifacts:
        if not isinstance(item, Artifact):
            raise TypeError(f"Transform yielded {type(item).__name__}, expected Artifact")
    return artifacts


class TransformerAdapter:
    """
    Invokes the caller-supplied transform over payloads.
    """

    def __init__(self, transform: TransformFunc, metrics: Optional[MetricsCollector] = None):
        if not callable(transform):
            raise TypeError("transform must be callable")
        self.transform = transform
        self.metrics = metrics or MetricsCollector()

    def apply(self, payload: Payload) -> List[Artifact]:
        """
        Run the transform once over ``payload``.

        Returns:
            Every artifact the transform produced (possibly none)

        Raises:
            TransformError: If the transform raises or returns something
                other than artifacts
        """
        notification = payload.notification
        try:
            with log_operation("Transforming record", logger, **notification.log_fields()):
                with self.metrics.time_stage("transform"):
                    artifacts = _materialize(self.transform(payload))
        except Exception as e:
            raise TransformError(f"Transform failed for {notification.key}: {e}", notification) from e

        logger.debug(
            f"Transform produced {len(artifacts)} artifact(s)",
            extra=notification.log_fields(),
        )
        return artifacts


def from_emitter(func: EmitterFunc) -> TransformFunc:
    """
    Adapt a callback-style transform ``func(payload, emit)`` to the
    return-based contract.

    Example:
        >>> def split_lines(payload, emit):
        ...     for i, line in enumerate(payload.text.splitlines()):
        ...         emit(payload.to_artifact(f"{payload.notification.key}.{i}", line))
        >>> transform = from_emitter(split_lines)
    """

    def transform(payload: Payload) -> List[Artifact]:
        emitted: List[Artifact] = []
        func(payload, emitted.append)
        return emitted

    transform.__name__ = getattr(func, "__name__", "emitter_transform")
    return transform


def load_transform(path: str) -> TransformFunc:
    """
    Resolve a transform from an import path.

    Args:
        path: "package.module:function" (or "package.module.function")

    Returns:
        The transform callable

    Raises:
        ConfigError: If the module or attribute cannot be found
    """
    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ConfigError(f"Invalid transform path '{path}'. Expected 'package.module:function'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import transform module '{module_name}': {e}") from e

    func = getattr(module, attr, None)
    if func is None or not callable(func):
        raise ConfigError(f"'{attr}' in module '{module_name}' is not a callable transform")

    logger.info(f"Loaded transform {module_name}:{attr}")
    return func


def prefix_transform(payload: Payload) -> Artifact:
    """
    Example transform: prefix the content with "FOO " and write it to
    ``out-<key>``.

    Deterministic in its input, so reprocessing a redelivered message
    rewrites the same object with the same content.
    """
    return payload.to_artifact(f"out-{payload.notification.key}", f"FOO {payload.text}")
