"""Client for the calendar relay Lambda function."""
import json
import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from feeds.errors import RelayAuthError, RelayError

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = (401, 403)
_AUTH_MARKERS = ('unauthorized', 'forbidden')


class RelayClient:
    """Fetches feed text through the relay function when direct fetches fail."""

    def __init__(self, function_name: str, lambda_client: Optional[Any] = None):
        """
        Initialize the relay client.

        Args:
            function_name: Name or ARN of the relay Lambda function
            lambda_client: boto3 Lambda client (created if omitted)
        """
        self.function_name = function_name
        self.lambda_client = lambda_client or boto3.client('lambda')

    def fetch(self, calendar_url: str) -> str:
        """
        Ask the relay to fetch ``calendar_url``.

        Args:
            calendar_url: Canonical feed URL

        Returns:
            Raw ICS text

        Raises:
            RelayAuthError: If the relay reports an authorization failure
            RelayError: On any other relay or transport failure
        """
        event = {
            'httpMethod': 'POST',
            'body': json.dumps({'calendarUrl': calendar_url})
        }

        logger.info(f"Fetching {calendar_url} through relay {self.function_name}")

        try:
            response = self.lambda_client.invoke(
                FunctionName=self.function_name,
                InvocationType='RequestResponse',
                Payload=json.dumps(event).encode('utf-8')
            )
            raw_payload = response['Payload'].read()
        except (ClientError, BotoCoreError) as e:
            raise RelayError(f"Relay invocation failed: {e}") from e

        if response.get('FunctionError'):
            raise RelayError(f"Relay function error: {raw_payload[:200]!r}")

        return self._decode(raw_payload)

    def _decode(self, raw_payload: bytes) -> str:
        try:
            proxy_response = json.loads(raw_payload)
            status_code = int(proxy_response.get('statusCode', 200))
            body = proxy_response.get('body') or '{}'
            payload: Dict[str, Any] = json.loads(body) if isinstance(body, str) else body
        except (ValueError, TypeError, AttributeError) as e:
            raise RelayError(f"Malformed relay response: {e}") from e

        if not isinstance(payload, dict):
            raise RelayError("Malformed relay response body")

        error = payload.get('error')
        if status_code in AUTH_STATUS_CODES or self._is_auth_message(error):
            raise RelayAuthError(error or f"Relay returned HTTP {status_code}")

        if status_code >= 300 or error:
            raise RelayError(error or f"Relay returned HTTP {status_code}")

        data = payload.get('data')
        if not isinstance(data, str):
            raise RelayError("No data received from relay")

        return data

    @staticmethod
    def _is_auth_message(error: Optional[str]) -> bool:
        if not error:
            return False
        lowered = str(error).lower()
        return any(marker in lowered for marker in _AUTH_MARKERS)
