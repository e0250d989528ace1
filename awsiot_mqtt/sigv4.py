"""
AWS Signature Version 4 presigning for MQTT over WebSocket.

AWS IoT authenticates WebSocket clients through a presigned ``/mqtt`` request
path. Signatures are only accepted for a few minutes, so a new path must be
signed before each connection attempt.
"""

import hashlib
import hmac
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

ALGORITHM = 'AWS4-HMAC-SHA256'
SERVICE = 'iotdevicegateway'
CANONICAL_URI = '/mqtt'

_ENDPOINT_REGION = re.compile(r'\.iot\.([a-z0-9-]+)\.amazonaws\.com(\.cn)?$')


def region_from_endpoint(endpoint: str) -> Optional[str]:
    """Extract the region from an endpoint like ``xyz-ats.iot.us-east-1.amazonaws.com``."""
    match = _ENDPOINT_REGION.search(endpoint.lower())
    return match.group(1) if match else None


def _sign(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()


def _signing_key(secret_access_key: str, datestamp: str, region: str) -> bytes:
    k_date = _sign(f"AWS4{secret_access_key}".encode('utf-8'), datestamp)
    k_region = _sign(k_date, region)
    k_service = _sign(k_region, SERVICE)
    return _sign(k_service, 'aws4_request')


def presign_websocket_path(host: str, region: str, access_key_id: str, secret_access_key: str,
                           session_token: Optional[str] = None,
                           now: Optional[datetime] = None) -> str:
    """
    Build a presigned WebSocket request path.

    Args:
        host: Broker host name (no scheme or port)
        region: AWS region of the endpoint
        access_key_id: AWS access key id
        secret_access_key: AWS secret access key
        session_token: Temporary session token, appended after signing
        now: Signing time (defaults to the current UTC time)

    Returns:
        Path with query string, e.g. ``/mqtt?X-Amz-Algorithm=...``
    """
    now = now or datetime.now(timezone.utc)
    amz_date = now.strftime('%Y%m%dT%H%M%SZ')
    datestamp = now.strftime('%Y%m%d')
    scope = f"{datestamp}/{region}/{SERVICE}/aws4_request"

    query = '&'.join([
        f"X-Amz-Algorithm={ALGORITHM}",
        f"X-Amz-Credential={quote(f'{access_key_id}/{scope}', safe='')}",
        f"X-Amz-Date={amz_date}",
        "X-Amz-SignedHeaders=host",
    ])
    canonical_request = '\n'.join([
        'GET',
        CANONICAL_URI,
        query,
        f"host:{host}\n",
        'host',
        hashlib.sha256(b'').hexdigest(),
    ])
    string_to_sign = '\n'.join([
        ALGORITHM,
        amz_date,
        scope,
        hashlib.sha256(canonical_request.encode('utf-8')).hexdigest(),
    ])
    signature = hmac.new(
        _signing_key(secret_access_key, datestamp, region),
        string_to_sign.encode('utf-8'),
        hashlib.sha256,
    ).hexdigest()

    path = f"{CANONICAL_URI}?{query}&X-Amz-Signature={signature}"
    if session_token:
        path += f"&X-Amz-Security-Token={quote(session_token, safe='')}"
    return path
