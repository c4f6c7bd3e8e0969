import re
from typing import Any, Dict, Optional

# GSM 03.38 basic character set (plus the common extension chars accepted by carriers)
GSM_PATTERN = re.compile(
    "^[@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,\\-./0-9:;<=>?¡A-ZÄÖÑÜ§¿a-zäöñüà]*$"
)
E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


def normalize_phone_number(phone: Optional[str]) -> Optional[str]:
    """
    Normalizes a phone number to E.164.
    Numbers without a country code are assumed to be US/Canada.
    """
    if not phone:
        return phone

    normalized = re.sub(r"[^\d+]", "", phone)

    if not normalized.startswith("+"):
        if normalized.startswith("1") and len(normalized) == 11:
            normalized = "+" + normalized
        elif len(normalized) == 10:
            normalized = "+1" + normalized
        else:
            normalized = "+" + normalized

    return normalized


def is_valid_phone_number(phone: Optional[str]) -> bool:
    if not phone:
        return False
    return bool(E164_PATTERN.match(normalize_phone_number(phone)))


def get_message_info(message: Optional[str]) -> Dict[str, Any]:
    """Returns length, segment count and encoding for an SMS body."""
    if not message:
        return {"length": 0, "segments": 0, "encoding": "GSM", "chars_remaining": 160}

    is_gsm = bool(GSM_PATTERN.match(message))
    chars_per_segment = 160 if is_gsm else 70
    # concatenated messages lose room to the UDH
    chars_per_multi_segment = 153 if is_gsm else 67

    length = len(message)
    if length <= chars_per_segment:
        segments = 1
        chars_remaining = chars_per_segment - length
    else:
        segments = -(-length // chars_per_multi_segment)
        chars_remaining = segments * chars_per_multi_segment - length

    return {
        "length": length,
        "segments": segments,
        "encoding": "GSM" if is_gsm else "Unicode",
        "chars_remaining": chars_remaining,
    }
