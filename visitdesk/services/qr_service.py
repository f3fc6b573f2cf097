import base64
import io
import json
import secrets
import string
import time
from datetime import datetime

import qrcode
from PIL import Image

from visitdesk.core.timeutil import to_iso

QR_IMAGE_SIZE = 400
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def new_pass_id() -> str:
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"VIS-{int(time.time() * 1000)}-{suffix}"


def build_qr_payload(
    pass_id: str,
    name: str,
    mobile: str | None,
    host: str | None,
    purpose: str,
    checkin_time: datetime,
    status: str,
) -> str:
    payload = {
        "id": pass_id,
        "name": name,
        "mobile": mobile or "",
        "host": host or "",
        "purpose": purpose,
        "checkin": to_iso(checkin_time),
        "status": status,
    }
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def parse_qr_payload(raw: str) -> dict:
    return json.loads(raw)


def render_qr_png(payload: str) -> bytes:
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=10, border=2)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    img = img.resize((QR_IMAGE_SIZE, QR_IMAGE_SIZE), Image.NEAREST)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
