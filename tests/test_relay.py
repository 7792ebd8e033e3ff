"""Unit tests for RelayClient."""
import io
import json
from unittest.mock import Mock, patch

import pytest
import responses
from botocore.exceptions import ClientError

from feeds.errors import RelayAuthError, RelayError
from feeds.relay import RelayClient
from lambda_function import lambda_handler

ICS_URL = "https://outlook.live.com/owa/calendar/abc/calendar.ics"
ICS_TEXT = "BEGIN:VCALENDAR\nVERSION:2.0\nEND:VCALENDAR\n"


def proxy_payload(status_code, body):
    payload = {'statusCode': status_code, 'body': json.dumps(body)}
    return {'StatusCode': 200, 'Payload': io.BytesIO(json.dumps(payload).encode('utf-8'))}


@pytest.fixture
def lambda_client():
    return Mock()


class TestRelayClient:
    """Test cases for RelayClient class."""

    def test_fetch_success(self, lambda_client):
        """Test that relay data is returned and the request is well formed."""
        lambda_client.invoke.return_value = proxy_payload(
            200, {'data': ICS_TEXT, 'status': 'success'}
        )

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)
        text = relay.fetch(ICS_URL)

        assert text == ICS_TEXT
        kwargs = lambda_client.invoke.call_args.kwargs
        assert kwargs['FunctionName'] == 'calendar-relay'
        assert kwargs['InvocationType'] == 'RequestResponse'
        event = json.loads(kwargs['Payload'])
        assert event['httpMethod'] == 'POST'
        assert json.loads(event['body']) == {'calendarUrl': ICS_URL}

    def test_error_payload_raises(self, lambda_client):
        """Test that an error response raises RelayError."""
        lambda_client.invoke.return_value = proxy_payload(
            500, {'error': 'Invalid calendar data received', 'status': 'error'}
        )

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)

        with pytest.raises(RelayError, match='Invalid calendar data'):
            relay.fetch(ICS_URL)

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_auth_status_raises_auth_error(self, lambda_client, status_code):
        """Test that 401/403 responses raise RelayAuthError."""
        lambda_client.invoke.return_value = proxy_payload(
            status_code, {'error': 'Failed to fetch calendar data', 'status': 'error'}
        )

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)

        with pytest.raises(RelayAuthError):
            relay.fetch(ICS_URL)

    def test_auth_message_raises_auth_error(self, lambda_client):
        """Test that an unauthorized error message is auth-flavoured."""
        lambda_client.invoke.return_value = proxy_payload(
            500, {'error': 'Upstream said Unauthorized', 'status': 'error'}
        )

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)

        with pytest.raises(RelayAuthError):
            relay.fetch(ICS_URL)

    def test_missing_data_raises(self, lambda_client):
        """Test that a success response without data raises RelayError."""
        lambda_client.invoke.return_value = proxy_payload(200, {'status': 'success'})

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)

        with pytest.raises(RelayError, match='No data'):
            relay.fetch(ICS_URL)

    def test_function_error_raises(self, lambda_client):
        """Test that an unhandled function error raises RelayError."""
        lambda_client.invoke.return_value = {
            'StatusCode': 200,
            'FunctionError': 'Unhandled',
            'Payload': io.BytesIO(b'{"errorMessage": "boom"}')
        }

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)

        with pytest.raises(RelayError):
            relay.fetch(ICS_URL)

    def test_malformed_payload_raises(self, lambda_client):
        """Test that a non-JSON payload raises RelayError."""
        lambda_client.invoke.return_value = {'StatusCode': 200, 'Payload': io.BytesIO(b'not json')}

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)

        with pytest.raises(RelayError):
            relay.fetch(ICS_URL)

    def test_client_error_raises(self, lambda_client):
        """Test that boto errors are wrapped in RelayError."""
        lambda_client.invoke.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'No such function'}},
            'Invoke'
        )

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)

        with pytest.raises(RelayError, match='No such function'):
            relay.fetch(ICS_URL)

    @patch('feeds.relay.boto3')
    def test_default_client(self, mock_boto3):
        """Test that a Lambda client is created when none is given."""
        RelayClient('calendar-relay')

        mock_boto3.client.assert_called_once_with('lambda')

    @responses.activate
    def test_round_trip_through_handler(self, lambda_client):
        """Test the client against the relay handler itself."""
        responses.add(responses.GET, ICS_URL, body=ICS_TEXT, status=200)

        def invoke(FunctionName, InvocationType, Payload):
            result = lambda_handler(json.loads(Payload), None)
            return {'StatusCode': 200, 'Payload': io.BytesIO(json.dumps(result).encode('utf-8'))}

        lambda_client.invoke.side_effect = invoke

        relay = RelayClient('calendar-relay', lambda_client=lambda_client)

        assert relay.fetch(ICS_URL) == ICS_TEXT
