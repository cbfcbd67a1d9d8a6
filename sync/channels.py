"""Message channels from the foreground app to the background worker."""
import json
import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from sync.messages import Ack, Message, to_wire

logger = logging.getLogger(__name__)


class LambdaChannel:
    """Sends messages to the deployed worker with a synchronous invoke."""

    def __init__(self, function_name: str, timeout: float = 5,
                 region_name: Optional[str] = None, client=None):
        self.function_name = function_name
        self.client = client or boto3.client(
            'lambda',
            region_name=region_name,
            config=Config(connect_timeout=timeout, read_timeout=timeout,
                          retries={'max_attempts': 1}),
        )

    def send(self, message: Message) -> Ack:
        try:
            response = self.client.invoke(
                FunctionName=self.function_name,
                InvocationType='RequestResponse',
                Payload=json.dumps(to_wire(message)).encode('utf-8'),
            )
            raw = response['Payload'].read()
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Cannot reach worker {self.function_name}: {e}")
            return Ack(success=False, error=str(e))

        try:
            data = json.loads(raw or b'{}')
        except ValueError:
            return Ack(success=False, error='Worker returned an unreadable response')

        if response.get('FunctionError'):
            return Ack(success=False, error=data.get('errorMessage', 'Worker failed'))

        body = data.get('body', data)
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError:
                return Ack(success=False, error='Worker returned an unreadable response')
        return Ack.from_dict(body)


class LocalChannel:
    """In-process channel; the worker only ever sees a serialized copy."""

    def __init__(self, worker):
        self.worker = worker

    def send(self, message: Message) -> Ack:
        return self.worker.handle_message(json.loads(json.dumps(to_wire(message))))
