"""Deterministic certificate hash.

The digest is keccak-256 over the ABI encoding of
``(string studentId, string universityCode, string companyCode, string position,
uint256 startDate, uint256 endDate, string certNumber)``, which is what the
contract and any third party can recompute from the public certificate facts.
Dates are Unix seconds; sub-second precision is dropped before encoding.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timezone as dt_timezone

from eth_abi import encode
from eth_utils import keccak


CERTIFICATE_HASH_TYPES = ["string", "string", "string", "string", "uint256", "uint256", "string"]


def to_unix_seconds(value) -> int:
    """Whole Unix seconds for a datetime, date or int. Naive datetimes are taken as UTC."""

    if isinstance(value, bool):
        raise TypeError("A boolean is not a timestamp")
    if isinstance(value, int):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt_timezone.utc)
        # timegm works on the UTC time tuple, which has no microseconds.
        return calendar.timegm(value.utctimetuple())
    if isinstance(value, date):
        return calendar.timegm(value.timetuple())
    raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")


def encode_certificate_facts(
    *,
    student_id: str,
    university_code: str,
    company_code: str,
    position: str,
    start_date,
    end_date,
    cert_number: str,
) -> bytes:
    start = to_unix_seconds(start_date)
    end = to_unix_seconds(end_date)
    if start < 0 or end < 0:
        raise ValueError("Certificate dates must not be before 1970-01-01")

    return encode(
        CERTIFICATE_HASH_TYPES,
        [
            str(student_id),
            str(university_code),
            str(company_code),
            str(position),
            start,
            end,
            str(cert_number),
        ],
    )


def compute_certificate_hash(
    *,
    student_id: str,
    university_code: str,
    company_code: str,
    position: str,
    start_date,
    end_date,
    cert_number: str,
) -> str:
    encoded = encode_certificate_facts(
        student_id=student_id,
        university_code=university_code,
        company_code=company_code,
        position=position,
        start_date=start_date,
        end_date=end_date,
        cert_number=cert_number,
    )
    return "0x" + keccak(encoded).hex()
