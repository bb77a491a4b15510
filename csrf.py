import secrets
import time

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="budget-csrf-token")


def generate_csrf_token(max_age_hours: int = 2) -> str:
    serializer = _serializer()
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)

    token_data = {"n": secrets.token_hex(8), "ts": timestamp, "exp": expiry}

    return serializer.dumps(token_data)


def validate_csrf_token(token: str) -> bool:
    if not token:
        return False
    serializer = _serializer()
    try:
        data = serializer.loads(token)
    except BadSignature:
        return False

    if not isinstance(data, dict):
        return False

    return int(time.time()) <= data.get("exp", 0)
