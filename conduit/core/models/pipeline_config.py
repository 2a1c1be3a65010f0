"""
PipelineConfig model: the immutable operating parameters shared by all lanes.
"""

from typing import Literal

from pydantic import BaseModel, Field, PositiveInt, NonNegativeInt

DEFAULT_BATCH_SIZE = 10
DEFAULT_POLL_FREQUENCY = 3000
DEFAULT_VISIBILITY_TIMEOUT = 10
DEFAULT_CONCURRENCY = 1
DEFAULT_MAX_IN_FLIGHT = 0
DEFAULT_EMPTY_RESULT_POLICY = "skip"
DEFAULT_SHUTDOWN_GRACE = 30.0


class PipelineConfig(BaseModel):
    """
    Resolved pipeline configuration.

    Built once by the config resolver and passed read-only to every lane.

    Attributes:
        batch_size: Max notifications requested per poll
        poll_frequency: Milliseconds between polls
        visibility_timeout: Seconds a received message stays hidden
        concurrency: Number of parallel lanes
        queue_url: Notification queue locator
        egress_bucket: Destination bucket for artifacts
        max_in_flight: Per-lane cap on running stage units (0 = unbounded)
        empty_result_policy: "skip" leaves zero-artifact notifications
            unacknowledged, "ack" acknowledges them without writing
        shutdown_grace: Seconds a stopped lane waits for in-flight units
        quarantine_bucket: Bucket receiving schema-violating message bodies
    """

    batch_size: PositiveInt = DEFAULT_BATCH_SIZE
    poll_frequency: PositiveInt = DEFAULT_POLL_FREQUENCY
    visibility_timeout: PositiveInt = DEFAULT_VISIBILITY_TIMEOUT
    concurrency: PositiveInt = DEFAULT_CONCURRENCY
    queue_url: str = Field(..., min_length=1)
    egress_bucket: str = Field(..., min_length=1)
    max_in_flight: NonNegativeInt = DEFAULT_MAX_IN_FLIGHT
    empty_result_policy: Literal["skip", "ack"] = DEFAULT_EMPTY_RESULT_POLICY
    shutdown_grace: float = Field(DEFAULT_SHUTDOWN_GRACE, ge=0, allow_inf_nan=False)
    quarantine_bucket: str | None = None

    class Config:
        frozen = True
        extra = "forbid"
        json_schema_extra = {
            "example": {
                "batch_size": 10,
                "poll_frequency": 3000,
                "visibility_timeout": 10,
                "concurrency": 2,
                "queue_url": "http://localstack:4566/000000000000/ingress-events",
                "egress_bucket": "egress",
            }
        }

    @property
    def poll_interval(self) -> float:
        """Poll period in seconds."""
        return self.poll_frequency / 1000.0

    def lane_start_delays(self) -> list[float]:
        """
        Seconds each lane waits before its first poll.

        Lane i starts i * poll_interval / concurrency after lane 0, spreading
        polls evenly across one interval.
        """
        step = self.poll_interval / self.concurrency
        return [i * step for i in range(self.concurrency)]
