import time
import uuid
from datetime import datetime, timezone

import shortuuid

_DOC_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_uuid() -> str:
    return str(uuid.uuid4())


def generate_order_id() -> str:
    return f"ORD-{int(time.time() * 1000)}"


def generate_document_number(prefix: str, *, now: datetime | None = None) -> str:
    """e.g. TRF-20260115-7KQ2"""
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    suffix = shortuuid.ShortUUID(alphabet=_DOC_ALPHABET).random(length=4)
    return f"{prefix}-{stamp}-{suffix}"
