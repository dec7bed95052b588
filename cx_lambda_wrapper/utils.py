import enum
import json
import os
import threading
from typing import Any

from opentelemetry.semconv._incubating.attributes.cloud_attributes import (
    CLOUD_RESOURCE_ID,
)
from opentelemetry.semconv._incubating.attributes.faas_attributes import (
    FAAS_COLDSTART,
    FAAS_INVOCATION_ID,
    FAAS_INVOKED_NAME,
    FAAS_INVOKED_PROVIDER,
    FAAS_INVOKED_REGION,
    FAAS_MAX_MEMORY,
    FAAS_TRIGGER,
    FAAS_VERSION,
    FaasInvokedProviderValues,
    FaasTriggerValues,
)
from opentelemetry.semconv._incubating.attributes.messaging_attributes import (
    MESSAGING_BATCH_MESSAGE_COUNT,
    MESSAGING_DESTINATION_NAME,
    MESSAGING_OPERATION,
    MESSAGING_SYSTEM,
    MessagingOperationTypeValues,
)
from opentelemetry.trace import Span, SpanKind

from cx_lambda_wrapper import constants


class AwsDataSource(enum.Enum):
    API_GATEWAY = "aws.api_gateway"
    HTTP_API = "aws.http_api"
    ELB = "aws.elb"
    SQS = "aws.sqs"
    SNS = "aws.sns"
    S3 = "aws.s3"
    DYNAMODB = "aws.dynamodb"
    KINESIS = "aws.kinesis"
    EVENT_BRIDGE = "aws.event_bridge"
    CLOUDWATCH_LOGS = "aws.cloudwatch_logs"
    OTHER = "aws.other"


# triggers whose invocation span continues a message, not a request
_CONSUMER_SOURCES = {
    AwsDataSource.SQS,
    AwsDataSource.SNS,
    AwsDataSource.S3,
    AwsDataSource.DYNAMODB,
}


def set_handler_attributes(
    event: Any, context: Any, span: Span, cold_start: bool = False
) -> None:
    """
    Set standard AWS Lambda attributes on the given span.

    The context is whatever the platform passed in, missing fields are
    skipped rather than failing the invocation.
    """

    data_source_mapper = DataSourceAttributeMapper(event)

    span.set_attributes(data_source_mapper.attributes)
    attributes = {
        FAAS_INVOCATION_ID: getattr(context, "aws_request_id", None),
        FAAS_INVOKED_NAME: getattr(context, "function_name", None),
        FAAS_INVOKED_REGION: getattr(context, "region", None)
        or os.getenv("AWS_REGION"),
        FAAS_INVOKED_PROVIDER: FaasInvokedProviderValues.AWS.value,
        FAAS_MAX_MEMORY: getattr(context, "memory_limit_in_mb", None),
        FAAS_VERSION: getattr(context, "function_version", None),
        FAAS_COLDSTART: cold_start,
        FAAS_TRIGGER: data_source_mapper.faas_trigger.value,
        CLOUD_RESOURCE_ID: getattr(context, "invoked_function_arn", None),
    }
    span.set_attributes({k: v for k, v in attributes.items() if v is not None})


class DataSourceAttributeMapper:
    def __init__(self, event: Any):
        self.event = event if isinstance(event, dict) else {}
        self.data_source, self.faas_trigger = self.get_sources()

    @property
    def attributes(self) -> dict:
        if self.data_source == AwsDataSource.SQS:
            return self._get_sqs_attributes()
        return {}

    @property
    def span_kind(self) -> SpanKind:
        if self.data_source in _CONSUMER_SOURCES:
            return SpanKind.CONSUMER
        return SpanKind.SERVER

    def get_sources(self) -> tuple[AwsDataSource, FaasTriggerValues]:
        # HTTP triggers
        request_context = self.event.get("requestContext")
        if isinstance(request_context, dict):
            if "apiId" in request_context:
                return (AwsDataSource.API_GATEWAY, FaasTriggerValues.HTTP)

            if "http" in request_context:
                return (AwsDataSource.HTTP_API, FaasTriggerValues.HTTP)

            if "elb" in request_context:
                return (AwsDataSource.ELB, FaasTriggerValues.HTTP)

        # EventBridge
        if "source" in self.event and "detail-type" in self.event:
            if self.event["detail-type"] == "Scheduled Event":
                return (AwsDataSource.EVENT_BRIDGE, FaasTriggerValues.TIMER)
            return (AwsDataSource.EVENT_BRIDGE, FaasTriggerValues.PUBSUB)

        # SNS/SQS/S3/DynamoDB/Kinesis
        records = self.event.get("Records")
        if isinstance(records, list) and len(records) > 0:
            record = records[0] if isinstance(records[0], dict) else {}
            event_source = record.get("eventSource") or record.get("EventSource")

            if event_source == "aws:sns":
                return (AwsDataSource.SNS, FaasTriggerValues.PUBSUB)

            if event_source == "aws:sqs":
                return (AwsDataSource.SQS, FaasTriggerValues.PUBSUB)

            if event_source == "aws:s3":
                return (AwsDataSource.S3, FaasTriggerValues.DATASOURCE)

            if event_source == "aws:dynamodb":
                return (AwsDataSource.DYNAMODB, FaasTriggerValues.DATASOURCE)

            if event_source == "aws:kinesis":
                return (AwsDataSource.KINESIS, FaasTriggerValues.DATASOURCE)

        # CloudWatch Logs
        awslogs = self.event.get("awslogs")
        if isinstance(awslogs, dict) and "data" in awslogs:
            return (AwsDataSource.CLOUDWATCH_LOGS, FaasTriggerValues.DATASOURCE)

        return (AwsDataSource.OTHER, FaasTriggerValues.OTHER)

    def _get_sqs_attributes(self) -> dict:
        records = self.event.get("Records", [])
        message_count = len(records)
        queue_arn = records[0].get("eventSourceARN", "") if message_count > 0 else ""
        queue_name = queue_arn.split(":")[-1]

        return {
            MESSAGING_SYSTEM: self.data_source.value,
            MESSAGING_OPERATION: MessagingOperationTypeValues.RECEIVE.value,
            MESSAGING_BATCH_MESSAGE_COUNT: message_count,
            MESSAGING_DESTINATION_NAME: queue_name,
            CLOUD_RESOURCE_ID: queue_arn,
        }


class ColdStartTracker:
    """Reports True for the first invocation of a non-provisioned sandbox."""

    def __init__(self):
        self._is_cold_start = True
        self._lock = threading.Lock()

    def check(self) -> bool:
        with self._lock:
            initialization_type = os.getenv(constants.LAMBDA_INITIALIZATION_TYPE)

            if initialization_type == "provisioned-concurrency":
                self._is_cold_start = False
                return False

            if not self._is_cold_start:
                return False

            self._is_cold_start = False
            return True


def serialize_payload(data: Any) -> str | None:
    if data is None:
        return None
    if isinstance(data, str):
        return data
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    if isinstance(data, (dict, list, tuple)):
        return json.dumps(data, default=str)
    return str(data)


def limit_payload(data: Any, limit: int) -> str | None:
    """
    Serialize a payload and cut it to at most ``limit`` UTF-8 bytes.

    The cut is a plain prefix, the result may not be valid JSON. A multibyte
    character split by the cut is dropped.
    """
    serialized = serialize_payload(data)
    if serialized is None:
        return None
    encoded = serialized.encode("utf-8")
    if len(encoded) <= limit:
        return serialized
    return encoded[:limit].decode("utf-8", errors="ignore")
