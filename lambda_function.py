"""AWS Lambda handler for the calendar relay function."""
import base64
import json
import logging
import os
import time
from typing import Dict, Any, Optional

import requests

from config import setup_logging

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'authorization, x-client-info, apikey, content-type, x-application-name',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Max-Age': '86400',
    'Content-Type': 'application/json'
}

RELAY_USER_AGENT = 'CalendarRelay/1.0'


def _response(status_code: int, payload: Any) -> Dict[str, Any]:
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return {
        'statusCode': status_code,
        'headers': dict(CORS_HEADERS),
        'body': body
    }


def _error(status_code: int, message: str) -> Dict[str, Any]:
    return _response(status_code, {'error': message, 'status': 'error'})


def _extract_calendar_url(event: Dict[str, Any]) -> Optional[str]:
    """
    Read calendarUrl from a direct invocation or an API Gateway proxy event.

    Raises:
        ValueError: If the proxy body is not valid JSON
    """
    if 'calendarUrl' in event:
        return event.get('calendarUrl')

    body = event.get('body')
    if not body:
        return None

    if isinstance(body, str):
        if event.get('isBase64Encoded'):
            body = base64.b64decode(body).decode('utf-8')
        body = json.loads(body)

    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")

    return body.get('calendarUrl')


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Fetch a calendar feed on behalf of a client that cannot fetch it directly.

    Args:
        event: Direct invocation payload or API Gateway proxy event
            carrying {"calendarUrl": ...}
        context: Lambda context object

    Returns:
        Proxy response whose JSON body is {"data", "status"} on success or
        {"error", "status"} on failure
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        return _relay(event, timeout_seconds, start_time)
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Relay execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _error(500, f"Relay execution failed: {str(e)}")


def _relay(event: Dict[str, Any], timeout_seconds: int, start_time: float) -> Dict[str, Any]:
    logger = logging.getLogger(__name__)

    method = (event.get('httpMethod')
              or event.get('requestContext', {}).get('http', {}).get('method')
              or 'POST').upper()
    if method == 'OPTIONS':
        return _response(200, 'ok')

    try:
        calendar_url = _extract_calendar_url(event)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Rejected malformed relay request: {e}")
        return _error(400, 'Request body must be JSON with a calendarUrl')

    if not calendar_url:
        return _error(400, 'Calendar URL is required')

    logger.info("Relay fetch started", extra={'calendar_url': calendar_url})

    try:
        response = requests.get(
            calendar_url,
            headers={'Accept': 'text/calendar', 'User-Agent': RELAY_USER_AGENT},
            timeout=timeout_seconds
        )
    except requests.RequestException as e:
        logger.error(
            f"Failed to fetch calendar data: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error(500, f"Failed to fetch calendar data: {str(e)}")

    if response.status_code in (401, 403):
        logger.warning(f"Upstream refused access with HTTP {response.status_code}")
        return _error(
            response.status_code,
            f"Failed to fetch calendar data: {response.status_code} {response.reason}"
        )

    if not response.ok:
        logger.error(f"Upstream returned HTTP {response.status_code}")
        return _error(
            500,
            f"Failed to fetch calendar data: {response.status_code} {response.reason}"
        )

    response.encoding = 'utf-8'
    ics_data = response.text

    if not ics_data.lstrip().startswith('BEGIN:VCALENDAR'):
        logger.error("Upstream payload is not calendar data")
        return _error(500, 'Invalid calendar data received')

    duration = time.time() - start_time
    logger.info(
        "Relay fetch completed",
        extra={'bytes': len(ics_data), 'duration_seconds': round(duration, 2)}
    )

    return _response(200, {'data': ics_data, 'status': 'success'})
