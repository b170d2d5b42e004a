from __future__ import annotations

import base64
import hashlib
import hmac
import math
import time
from typing import Optional
from urllib.parse import quote

# Characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"


def _encode_uri_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def generate_sas_token(
    resource_uri: str,
    signing_key: str,
    policy_name: str,
    expires_in_mins: float,
    now: Optional[float] = None,
) -> str:
    """
    Build a shared access signature for an IoT hub resource.

    Args:
        resource_uri: Resource the token grants access to (e.g. "myhub.azure-devices.net/messages/events")
        signing_key: Base64 encoded shared access key
        policy_name: Shared access policy name (e.g. "service")
        expires_in_mins: Validity window of the token
        now: Current unix time in seconds, defaults to the wall clock

    Returns:
        Token string in the form "SharedAccessSignature sr=...&sig=...&se=...&skn=..."
    """
    if now is None:
        now = time.time()

    encoded_uri = _encode_uri_component(resource_uri)
    expiry = math.ceil(now + expires_in_mins * 60)
    to_sign = f"{encoded_uri}\n{expiry}"

    digest = hmac.new(
        base64.b64decode(signing_key),
        to_sign.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    signature = _encode_uri_component(base64.b64encode(digest).decode("utf-8"))

    return f"SharedAccessSignature sr={encoded_uri}&sig={signature}&se={expiry}&skn={policy_name}"
