# caselookup/services/search_parser.py
import re
from typing import List

# Lexis-Nexis style: county code, four-digit year, optional type, six-digit number.
# 5902022CR 714844 -> 22CR714844-590
LEXIS_NEXIS_PATTERN = re.compile(
    r"(?P<county_code>\d{3})(?:19|20)(?P<year>\d{2})(?P<case_type>[A-Za-z]{2})?(?:S|\s\n?)?(?P<case_no>\d{6})"
)
CASE_NUMBER_PATTERN = re.compile(r"\d{2}[A-Za-z]{2}\d{6}-\d{3}")
DEFAULT_CASE_TYPE = "CR"


def _to_standard_format(match: re.Match) -> str:
    case_type = match.group("case_type") or DEFAULT_CASE_TYPE
    return f"{match.group('year')}{case_type}{match.group('case_no')}-{match.group('county_code')}"


def parse_search_input(text: str) -> List[str]:
    """Pulls case numbers (YYTTnnnnnn-CCC) out of free text, first occurrence order, no repeats."""
    if not text or not text.strip():
        return []
    normalized = LEXIS_NEXIS_PATTERN.sub(_to_standard_format, text)
    seen = {}
    for token in CASE_NUMBER_PATTERN.findall(normalized):
        seen.setdefault(token.upper(), None)
    return list(seen)
