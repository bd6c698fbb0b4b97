"""
Webhook origin verification - decide whether an inbound request really comes
from the ad platform it claims.

Supported platforms:
- Meta Lead Ads: HMAC-SHA256 of the raw body via X-Hub-Signature-256
- Google Ads lead forms: HMAC-SHA256 of the raw body via X-Google-Ads-Signature
- Grupo OLX/ZAP: user-agent token plus an optional shared secret
  (Authorization: Bearer <secret> or ?secret_key=)

Signatures are always computed over the exact request bytes, before JSON parsing.
"""
import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def validate_hmac_sha256(
    secret: str,
    signature: str,
    body: bytes,
    header_prefix: str = "sha256=",
) -> bool:
    """
    Validate an HMAC-SHA256 webhook signature in constant time.
    Handles signatures with optional prefix (e.g., "sha256=...").
    Returns True if valid, False if invalid.
    """
    if not secret or not signature:
        return False

    sig = signature.strip()
    if header_prefix and sig.startswith(header_prefix):
        sig = sig[len(header_prefix):]

    try:
        expected = hmac.new(
            secret.encode("utf-8"),
            body,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, sig.lower())
    except Exception as e:
        logger.error("HMAC-SHA256 validation error: %s", str(e))
        return False


def compute_payload_hash(body: bytes) -> str:
    """SHA-256 of the raw payload, stored on audit rows to spot redeliveries."""
    return hashlib.sha256(body).hexdigest()


def verify_meta_signature(
    body: bytes,
    signature_header: Optional[str],
    app_secret: Optional[str],
) -> bool:
    """
    Verify a Meta webhook delivery.

    Partially configured integrations are tolerated: with no app secret stored,
    or no X-Hub-Signature-256 header sent, the check passes.
    """
    if not app_secret or not signature_header:
        if signature_header and not app_secret:
            logger.warning(
                "Meta webhook carries a signature but the integration has no "
                "app secret - accepting without verification",
            )
        return True
    return validate_hmac_sha256(app_secret, signature_header, body)


def verify_google_ads_signature(
    body: bytes,
    signature_header: Optional[str],
    webhook_secret: Optional[str],
) -> bool:
    """Verify a Google Ads lead-form delivery. Same leniency as Meta."""
    if not webhook_secret or not signature_header:
        return True
    return validate_hmac_sha256(webhook_secret, signature_header, body)


def extract_bearer_secret(
    authorization: Optional[str],
    query_secret: Optional[str] = None,
) -> Optional[str]:
    """Shared secret from `Authorization: Bearer <secret>`, else the secret_key query param."""
    if authorization:
        token = authorization
        if token.startswith("Bearer "):
            token = token[len("Bearer "):]
        token = token.strip()
        if token:
            return token
    return query_secret or None


def verify_olx_zap_origin(
    user_agent: Optional[str],
    supplied_secret: Optional[str],
    *,
    expected_secret: str,
    user_agent_token: str,
    strict: bool,
) -> tuple[bool, Optional[str]]:
    """
    Verify a Grupo OLX/ZAP delivery.

    Returns (is_valid, failure_reason). With strict=False every request passes.
    A request without any secret passes the secret check; a supplied secret
    must match the configured one.
    """
    if not strict:
        return True, None

    if user_agent_token not in (user_agent or ""):
        logger.warning("OLX/ZAP webhook rejected: unexpected user-agent %r", user_agent)
        return False, "Invalid user-agent"

    if supplied_secret and expected_secret:
        if not hmac.compare_digest(supplied_secret.encode(), expected_secret.encode()):
            logger.warning("OLX/ZAP webhook rejected: secret key mismatch")
            return False, "Invalid secret key"

    return True, None


def verify_token_matches(supplied: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison for the Meta subscription handshake token."""
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode(), expected.encode())
