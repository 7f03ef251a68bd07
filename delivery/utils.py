import base64, binascii, hashlib, hmac, logging, time

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300


def _secret_key(secret: str) -> bytes | None:
    if secret.startswith("whsec_"):
        secret = secret[len("whsec_"):]
    try:
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        logger.error("Webhook secret is not valid base64")
        return None


def compute_signature(body: bytes, msg_id: str, timestamp: str, secret: str) -> str:
    key = _secret_key(secret)
    if key is None:
        return ""
    signed = f"{msg_id}.{timestamp}.".encode("utf-8") + body
    return base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode("ascii")


def verify_webhook_signature(body: bytes, headers, secret: str, now=None) -> bool:
    """Svix-style check of ``svix-id`` / ``svix-timestamp`` / ``svix-signature``."""
    msg_id = headers.get("svix-id")
    timestamp = headers.get("svix-timestamp")
    signature_header = headers.get("svix-signature")
    if not (msg_id and timestamp and signature_header):
        logger.warning("Missing svix headers on webhook")
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    now = int(time.time() if now is None else now)
    if abs(now - sent_at) > SIGNATURE_TOLERANCE_SECONDS:
        logger.warning("Webhook timestamp %s outside tolerance (now=%s)", sent_at, now)
        return False

    expected = compute_signature(body, msg_id, timestamp, secret)
    if not expected:
        return False
    for candidate in signature_header.split():
        version, _, signature = candidate.partition(",")
        if version == "v1" and hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
            return True
    logger.warning("Webhook signature mismatch for %s", msg_id)
    return False
