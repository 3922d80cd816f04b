"""Outbound message delivery (SMS and email).

Contract: given a destination and a body, attempt delivery once and report
success or failure. The AWS clients are built with a single attempt and
bounded timeouts; the user may ask again while the credential is valid.
"""

import logging
import os
from typing import Any, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from bndy_api.auth.contacts import peppered_hash
from bndy_api.config import env

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Deliver ``body`` to ``destination``; True on accepted delivery."""

    def send(self, destination: str, body: str) -> bool:
        ...


def _aws_client(service_name: str) -> Any:
    """Build a boto3 client with one attempt and bounded timeouts.

    AWS_ENDPOINT_URL (LocalStack) is honoured outside production only.
    """
    timeout = env.get_notifier_timeout_seconds()
    config = Config(
        region_name=env.get_aws_region(require_in_prod=True),
        retries={"max_attempts": 1, "mode": "standard"},
        connect_timeout=timeout,
        read_timeout=timeout,
    )

    kwargs: dict[str, Any] = {"config": config}

    endpoint = os.getenv("AWS_ENDPOINT_URL")
    if endpoint:
        if env.is_production_env() and not env.is_localstack_endpoint(endpoint):
            raise ValueError(
                f"Custom AWS endpoint not allowed in production for {service_name}: {endpoint}"
            )
        kwargs["endpoint_url"] = endpoint
        if env.is_localstack_endpoint(endpoint) and not os.getenv("AWS_ACCESS_KEY_ID"):
            kwargs["aws_access_key_id"] = "test"
            kwargs["aws_secret_access_key"] = "test"

    return boto3.client(service_name, **kwargs)


class SnsSmsNotifier:
    """Transactional SMS through Amazon SNS."""

    def __init__(self, client: Optional[Any] = None, sender_id: str = "bndy"):
        self.client = client or _aws_client("sns")
        self.sender_id = sender_id

    def send(self, destination: str, body: str) -> bool:
        try:
            self.client.publish(
                PhoneNumber=destination,
                Message=body,
                MessageAttributes={
                    "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"},
                    "AWS.SNS.SMS.SenderID": {"DataType": "String", "StringValue": self.sender_id},
                },
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "SMS delivery failed",
                extra={
                    "event": "notifier.sms.failed",
                    "destination_hash": peppered_hash(destination),
                    "error_type": type(e).__name__,
                },
            )
            return False

        logger.info(
            "SMS delivered to provider",
            extra={"event": "notifier.sms.sent", "destination_hash": peppered_hash(destination)},
        )
        return True


class SesEmailNotifier:
    """Plain-text email through Amazon SES."""

    def __init__(
        self,
        client: Optional[Any] = None,
        sender: Optional[str] = None,
        subject: str = "Your bndy sign-in link",
    ):
        self.client = client or _aws_client("ses")
        self.sender = sender or env.get_email_from_address()
        self.subject = subject

    def send(self, destination: str, body: str) -> bool:
        try:
            self.client.send_email(
                Source=self.sender,
                Destination={"ToAddresses": [destination]},
                Message={
                    "Subject": {"Data": self.subject, "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
                },
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "Email delivery failed",
                extra={
                    "event": "notifier.email.failed",
                    "destination_hash": peppered_hash(destination),
                    "error_type": type(e).__name__,
                },
            )
            return False

        logger.info(
            "Email delivered to provider",
            extra={"event": "notifier.email.sent", "destination_hash": peppered_hash(destination)},
        )
        return True


class LoggingNotifier:
    """Local development: write the message to the log instead of sending it."""

    def __init__(self, channel: str):
        self.channel = channel

    def send(self, destination: str, body: str) -> bool:
        logger.info(
            f"[{self.channel}] {body}",
            extra={
                "event": f"notifier.{self.channel}.logged",
                "destination_hash": peppered_hash(destination),
            },
        )
        return True


_sms_notifier: Optional[Notifier] = None
_email_notifier: Optional[Notifier] = None


def get_sms_notifier() -> Notifier:
    """Get SMS notifier singleton (NOTIFIER_MODE selects SNS or logging)."""
    global _sms_notifier
    if _sms_notifier is None:
        _sms_notifier = SnsSmsNotifier() if env.get_notifier_mode() == "aws" else LoggingNotifier("sms")
    return _sms_notifier


def get_email_notifier() -> Notifier:
    """Get email notifier singleton (NOTIFIER_MODE selects SES or logging)."""
    global _email_notifier
    if _email_notifier is None:
        _email_notifier = SesEmailNotifier() if env.get_notifier_mode() == "aws" else LoggingNotifier("email")
    return _email_notifier
