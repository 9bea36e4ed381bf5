# src/UAA/totp.py
# RFC 6238, six digits over 30 second steps; pyotp compares codes in constant time.

import calendar
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import pyotp

from .utils import utcnow

TOTP_DIGITS = 6
TOTP_TIME_STEP = 30
TOTP_SECRET_LENGTH = 32  # base32 chars, 160 bits
BACKUP_CODE_BYTES = 4


@dataclass
class TOTPSecret:
    base32_secret: str
    provisioning_uri: str


def _timestamp(when: Optional[datetime]) -> int:
    # Naive datetimes here are UTC; pyotp would read them as local time.
    return calendar.timegm((when or utcnow()).utctimetuple())


def generate_secret(account_name: str, issuer: str) -> TOTPSecret:
    secret = pyotp.random_base32(length=TOTP_SECRET_LENGTH)
    uri = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_TIME_STEP).provisioning_uri(
        name=account_name, issuer_name=issuer
    )
    return TOTPSecret(base32_secret=secret, provisioning_uri=uri)


def current_code(secret: str, when: Optional[datetime] = None) -> str:
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_TIME_STEP).at(_timestamp(when))


def verify_code(secret: str, code: str, window_steps: int = 1, when: Optional[datetime] = None) -> bool:
    code = (code or "").strip().replace(" ", "")
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_TIME_STEP)
    return totp.verify(code, for_time=_timestamp(when), valid_window=window_steps)


def generate_backup_codes(n: int) -> List[str]:
    return [secrets.token_hex(BACKUP_CODE_BYTES).upper() for _ in range(n)]
