"""Keyword classification of clinical content into therapeutic and practice areas."""

from dataclasses import dataclass

GENERAL_THERAPEUTIC_AREA = "general"

# Ordered: the first table entry with a matching keyword wins
THERAPEUTIC_AREA_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("diabetes",), "endocrine"),
    (("hypertension",), "cardiovascular"),
    (("antimicrobial", "antibiotic"), "infectious_diseases"),
    (("kidney", "renal"), "renal"),
    (("cardiac", "heart"), "cardiovascular"),
    (("respiratory", "asthma"), "respiratory"),
    (("gastro", "stomach"), "gastrointestinal"),
)

HOSPITAL_PHARMACY = "hospital_pharmacy"
COMMUNITY_PHARMACY = "community_pharmacy"
BOTH_PRACTICE_AREAS = "both"


@dataclass(frozen=True)
class Classification:
    therapeutic_area: str
    practice_area: str


def classify_therapeutic_area(url: str, content: str) -> str:
    """Match URL and body text against the therapeutic keyword table (case-insensitive)."""
    haystack = f"{url} {content}".lower()
    for keywords, area in THERAPEUTIC_AREA_KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return area
    return GENERAL_THERAPEUTIC_AREA


def classify_practice_area(url: str, content: str) -> str:
    """Hospital-only or community-only mentions pick one area, otherwise both."""
    text = f"{url} {content}".lower()
    hospital = "hospital" in text
    community = "community" in text
    if hospital and not community:
        return HOSPITAL_PHARMACY
    if community and not hospital:
        return COMMUNITY_PHARMACY
    return BOTH_PRACTICE_AREAS


def classify(url: str, content: str) -> Classification:
    return Classification(
        therapeutic_area=classify_therapeutic_area(url, content),
        practice_area=classify_practice_area(url, content),
    )
