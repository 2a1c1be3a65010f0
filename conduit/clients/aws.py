"""
boto3 adapters for SQS and S3.

Thin wrappers that satisfy the QueueClient and ObjectStore protocols.
Errors from botocore propagate unchanged; the pipeline stages translate
them into the conduit error taxonomy.
"""
import os
from typing import Any

import boto3
from botocore.config import Config as BotoConfig

from conduit.clients.interfaces import ReceivedMessage
from conduit.observability.logger import get_logger

logger = get_logger(__name__)

# SQS rejects MaxNumberOfMessages above 10
SQS_MAX_BATCH = 10


def create_session(
    region: str | None = None,
    endpoint_url: str | None = None,
) -> "AwsSession":
    """
    Create an AWS session for the pipeline clients.

    Args:
        region: AWS region (defaults to env var AWS_REGION, then us-east-1)
        endpoint_url: Custom endpoint, e.g. LocalStack (defaults to env var
            CONDUIT_AWS_ENDPOINT_URL)

    Returns:
        AwsSession able to build SQS and S3 clients
    """
    region = region or os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "us-east-1"
    endpoint_url = endpoint_url or os.getenv("CONDUIT_AWS_ENDPOINT_URL") or None
    logger.info(f"Creating AWS session (region: {region}, endpoint: {endpoint_url or 'default'})")
    return AwsSession(boto3.session.Session(region_name=region), endpoint_url)


class AwsSession:
    """
    boto3 session plus the endpoint override shared by every client.

    A custom endpoint switches S3 to path-style addressing, which LocalStack
    requires.
    """

    def __init__(self, session: boto3.session.Session, endpoint_url: str | None = None):
        self.session = session
        self.endpoint_url = endpoint_url

    @property
    def region(self) -> str:
        return self.session.region_name

    def client(self, service_name: str) -> Any:
        kwargs: dict[str, Any] = {}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
            if service_name == "s3":
                kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})
        return self.session.client(service_name, **kwargs)

    def queue(self, queue_url: str) -> "SqsQueueClient":
        return SqsQueueClient(queue_url, self.client("sqs"))

    def object_store(self) -> "S3ObjectStore":
        return S3ObjectStore(self.client("s3"))


class SqsQueueClient:
    """QueueClient backed by an SQS queue."""

    def __init__(self, queue_url: str, client: Any):
        if not queue_url:
            raise ValueError("queue_url must be specified")
        self.queue_url = queue_url
        self.client = client

    def receive(self, max_count: int, visibility_timeout: int) -> list[ReceivedMessage]:
        max_count = min(max_count, SQS_MAX_BATCH)
        response = self.client.receive_message(
            QueueUrl=self.queue_url,
            AttributeNames=["SentTimestamp"],
            MessageAttributeNames=["All"],
            MaxNumberOfMessages=max_count,
            VisibilityTimeout=visibility_timeout,
        )
        return [
            ReceivedMessage(
                body=message["Body"],
                receipt_handle=message["ReceiptHandle"],
                message_id=message.get("MessageId"),
            )
            for message in response.get("Messages", [])
        ]

    def delete(self, receipt_handle: str) -> None:
        self.client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)


class S3ObjectStore:
    """ObjectStore backed by S3."""

    def __init__(self, client: Any):
        self.client = client

    def get(self, bucket: str, key: str) -> bytes:
        response = self.client.get_object(Bucket=bucket, Key=key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def put(self, bucket: str, key: str, data: bytes) -> None:
        self.client.put_object(Bucket=bucket, Key=key, Body=data)
