"""
UK postcode helpers.

Everything here is pure string handling: normalisation, extraction from free
text, outward-code parsing and the location priority chain used to decide
where a job actually is.
"""
import re

_WHITESPACE = re.compile(r"\s+")
_AREA_AND_REST = re.compile(r"^([A-Z]{1,2})(.*)$", re.DOTALL)
_POSTCODE_IN_TEXT = re.compile(r"([A-Z]{1,2}[0-9][A-Z0-9]?\s?[0-9][A-Z]{2})", re.IGNORECASE)
_OUTWARD_TOKEN = re.compile(r"^[A-Z]{1,2}[0-9][A-Z0-9]?$")
_INWARD = re.compile(r"^[0-9][A-Z]{2}$")
_GREEDY_OUTWARD = re.compile(r"^([A-Z]{1,2}[0-9]{1,2})([A-Z](?=[0-9]|$))?")
_AREA_LETTERS = re.compile(r"^[A-Z]{1,2}$")
_TRAILING_DISTRICT = re.compile(r"[0-9]+[A-Z]?$")


def _zero_for_o(postcode: str) -> str:
    # O never appears after the area letters, so read it as a mistyped zero there
    m = _AREA_AND_REST.match(postcode)
    if not m:
        return postcode
    return m.group(1) + m.group(2).replace("O", "0")


def normalize_postcode(postcode: str | None) -> str:
    if not postcode:
        return ""
    cleaned = _WHITESPACE.sub(" ", postcode).upper().strip()
    return _zero_for_o(cleaned)


def cache_key(postcode: str | None) -> str:
    """Key used for every cache tier: upper-case, no whitespace at all."""
    return _WHITESPACE.sub("", normalize_postcode(postcode))


def extract_postcode_from_address(address: str | None) -> str | None:
    if not address:
        return None
    match = _POSTCODE_IN_TEXT.search(address)
    if match:
        return normalize_postcode(match.group(1))
    return None


def get_best_postcode(job) -> str | None:
    """
    Priority: job postcode -> client postcode -> client address -> job address.
    """
    postcode = normalize_postcode(getattr(job, "postcode", None))
    if postcode:
        return postcode

    client = getattr(job, "client", None)
    postcode = normalize_postcode(getattr(client, "postcode", None))
    if postcode:
        return postcode

    if client is not None and getattr(client, "address", None):
        extracted = extract_postcode_from_address(client.address)
        if extracted:
            return extracted

    job_address = getattr(job, "job_address", None)
    if job_address:
        extracted = extract_postcode_from_address(job_address)
        if extracted:
            return extracted

    return None


def get_outward_code(postcode: str | None) -> str:
    """
    "DA5 1BJ" -> "DA5", "SW1A1AA" -> "SW1A", "M11AA" -> "M1", "NE65DY" -> "NE65".

    A space marks the split when present. Unspaced five and seven character
    strings carry a full inward code, so the last three characters are
    dropped. Anything else is read greedily: area letters, up to two district
    digits and a district letter only when a digit or the end follows it.
    """
    if not postcode:
        return ""

    normalized = normalize_postcode(postcode)
    parts = normalized.split(" ")
    if len(parts) > 1 and _OUTWARD_TOKEN.match(parts[0]):
        return parts[0]

    compact = normalized.replace(" ", "")
    if len(compact) in (5, 7) and _INWARD.match(compact[-3:]) and _OUTWARD_TOKEN.match(compact[:-3]):
        return compact[:-3]

    m = _GREEDY_OUTWARD.match(compact)
    if not m:
        return ""
    return m.group(1) + (m.group(2) or "")


def get_area_letters(outward_code: str) -> str:
    """Letters-only area prefix: "DA5" -> "DA", "SW1A" -> "SW"."""
    return _TRAILING_DISTRICT.sub("", outward_code or "")


def is_area_only(code: str) -> bool:
    return bool(_AREA_LETTERS.match(code or ""))


def get_location_display_text(job) -> str:
    postcode = get_best_postcode(job)
    if postcode:
        return postcode

    client = getattr(job, "client", None)
    address = getattr(job, "job_address", None) or (getattr(client, "address", None) if client else None)
    if address:
        last = address.split(",")[-1].strip()
        return last or address

    return "No location"
