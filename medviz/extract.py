"""Keyword based extraction of findings from free-text medical reports.

Every (body part, condition) pair from two fixed vocabularies is looked up in
the report with a case-insensitive regular expression that accepts either
order of the two terms. Each pair that matches yields one :class:`Finding`
whose severity comes from keyword buckets scanned in priority order. The
severity scan covers the matched text plus the word directly in front of it
(only spaces between), so "severe fracture in the left" is severe even
though the match itself starts at "fracture"; "Severe knee pain" is severe
for the same reason.

The scan is plain pattern matching, not NLP: there is no negation handling,
so "no fracture of the arm" still reports an arm fracture.

``extract_findings`` is pure and keeps no state between calls, so it can be
called from any number of request threads at once.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Pattern, Tuple


BODY_PARTS: Tuple[str, ...] = (
    "head",
    "neck",
    "shoulder",
    "arm",
    "elbow",
    "wrist",
    "hand",
    "chest",
    "heart",
    "lung",
    "abdomen",
    "stomach",
    "liver",
    "kidney",
    "spine",
    "back",
    "hip",
    "leg",
    "knee",
    "ankle",
    "foot",
    # laterality/position modifiers count as body-part tokens of their own
    "left",
    "right",
    "upper",
    "lower",
)

CONDITIONS: Tuple[str, ...] = (
    "fracture",
    "break",
    "crack",
    "lesion",
    "tumor",
    "cyst",
    "inflammation",
    "swelling",
    "pain",
    "strain",
    "sprain",
    "tear",
    "rupture",
    "dislocation",
    "disease",
    "abnormality",
    "damage",
)

SEVERITIES: Tuple[str, ...] = ("severe", "moderate", "mild")

# checked in SEVERITIES order; first bucket with a hit wins
SEVERITY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "severe": ("severe", "critical", "acute", "serious", "major", "significant"),
    "moderate": ("moderate", "notable", "substantial"),
    "mild": ("mild", "minor", "slight", "minimal", "small"),
}

DEFAULT_SEVERITY = "mild"


@dataclass(frozen=True)
class Finding:
    body_part: str
    condition: str
    severity: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        """JSON shape shared with the API and the stored ``findings`` column."""
        return {
            "bodyPart": self.body_part,
            "condition": self.condition,
            "severity": self.severity,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "Finding":
        severity = data.get("severity") or DEFAULT_SEVERITY
        if severity not in SEVERITIES:
            severity = DEFAULT_SEVERITY
        return cls(
            body_part=data.get("bodyPart") or data.get("body_part") or "",
            condition=data.get("condition") or "",
            severity=severity,
            description=data.get("description") or "",
        )


SENTINEL = Finding(
    body_part="General",
    condition="Assessment",
    severity="mild",
    description="Report received for analysis",
)


def _capitalize(term: str) -> str:
    return term[:1].upper() + term[1:]


def _pair_pattern(body_part: str, condition: str) -> Pattern[str]:
    bp = re.escape(body_part)
    cond = re.escape(condition)
    return re.compile(rf"\b{bp}\b.*?\b{cond}\b|\b{cond}\b.*?\b{bp}\b", re.IGNORECASE)


# compiled once; iteration order defines output order
_PAIR_PATTERNS: Tuple[Tuple[str, str, Pattern[str]], ...] = tuple(
    (bp, cond, _pair_pattern(bp, cond)) for bp in BODY_PARTS for cond in CONDITIONS
)

# a word directly in front of the match, e.g. "severe" in "severe fracture in the left"
_LEADING_WORD_RX = re.compile(r"(\w+)[ \t]+$")
_LOOKBEHIND_CHARS = 64


def classify_severity(text: str) -> str:
    """Return the first severity bucket with a keyword contained in ``text``."""
    low = (text or "").lower()
    for severity in SEVERITIES:
        if any(keyword in low for keyword in SEVERITY_KEYWORDS[severity]):
            return severity
    return DEFAULT_SEVERITY


def _severity_window(text: str, match: "re.Match[str]") -> str:
    head = text[max(0, match.start() - _LOOKBEHIND_CHARS):match.start()]
    lead = _LEADING_WORD_RX.search(head)
    if lead:
        return f"{lead.group(1)} {match.group(0)}"
    return match.group(0)


def extract_findings(report_text: str) -> List[Finding]:
    """Extract findings from ``report_text``.

    Never raises and never returns an empty list: when nothing matches the
    single :data:`SENTINEL` finding is returned.
    """
    text = report_text or ""
    findings: List[Finding] = []
    if text.strip():
        for body_part, condition, pattern in _PAIR_PATTERNS:
            # leftmost match == first of the non-overlapping matches
            match = pattern.search(text)
            if match is None:
                continue
            findings.append(
                Finding(
                    body_part=_capitalize(body_part),
                    condition=_capitalize(condition),
                    severity=classify_severity(_severity_window(text, match)),
                    description=match.group(0),
                )
            )

    if not findings:
        return [SENTINEL]
    return findings


def is_sentinel_only(findings: List[Finding]) -> bool:
    return len(findings) == 1 and findings[0] == SENTINEL


def findings_to_dicts(findings: List[Finding]) -> List[Dict[str, str]]:
    return [f.to_dict() for f in findings]


def findings_from_dicts(rows: List[Dict[str, str]]) -> List[Finding]:
    return [Finding.from_dict(row) for row in rows or []]


__all__ = [
    "BODY_PARTS",
    "CONDITIONS",
    "SEVERITIES",
    "SEVERITY_KEYWORDS",
    "SENTINEL",
    "Finding",
    "classify_severity",
    "extract_findings",
    "findings_from_dicts",
    "findings_to_dicts",
    "is_sentinel_only",
]