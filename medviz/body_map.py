"""Placement of findings on the fixed anatomical diagram.

The diagram is a 300x400 SVG: a handful of body outline shapes that are
tinted by the severity of the matching finding, plus one marker per
anatomical body part that has at least one finding. Laterality tokens
(left/right/upper/lower) have no place on the diagram and only show up in
the findings list.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List

from .extract import SEVERITIES, Finding

CANVAS = {"width": 300, "height": 400}

SEVERITY_COLORS = {
    "severe": "#dc2626",
    "moderate": "#f59e0b",
    "mild": "#fbbf24",
}
UNAFFECTED_COLOR = "#e5e7eb"

# outline shapes: (region, svg tag, geometry)
SHAPES: List[Dict[str, Any]] = [
    {"region": "head", "tag": "circle", "attrs": {"cx": 150, "cy": 50, "r": 30}},
    {"region": "neck", "tag": "rect", "attrs": {"x": 140, "y": 80, "width": 20, "height": 20}},
    {"region": "chest", "tag": "ellipse", "attrs": {"cx": 150, "cy": 130, "rx": 35, "ry": 45}},
    {"region": "arm", "tag": "rect", "attrs": {"x": 100, "y": 110, "width": 20, "height": 100}},
    {"region": "arm", "tag": "rect", "attrs": {"x": 180, "y": 110, "width": 20, "height": 100}},
    {"region": "abdomen", "tag": "ellipse", "attrs": {"cx": 150, "cy": 210, "rx": 30, "ry": 40}},
    {"region": "leg", "tag": "rect", "attrs": {"x": 125, "y": 250, "width": 20, "height": 120}},
    {"region": "leg", "tag": "rect", "attrs": {"x": 155, "y": 250, "width": 20, "height": 120}},
    {"region": "foot", "tag": "ellipse", "attrs": {"cx": 135, "cy": 385, "rx": 12, "ry": 8}},
    {"region": "foot", "tag": "ellipse", "attrs": {"cx": 165, "cy": 385, "rx": 12, "ry": 8}},
]

# marker anchor per anatomical body part: [cx, cy, r]
MARKER_POSITIONS: Dict[str, List[int]] = {
    "head": [150, 50, 30],
    "neck": [150, 85, 15],
    "shoulder": [120, 110, 20],
    "arm": [100, 140, 15],
    "elbow": [95, 170, 12],
    "wrist": [90, 200, 10],
    "hand": [85, 230, 12],
    "chest": [150, 130, 35],
    "heart": [150, 120, 15],
    "lung": [140, 130, 20],
    "abdomen": [150, 180, 40],
    "stomach": [150, 170, 25],
    "liver": [165, 160, 20],
    "kidney": [140, 165, 15],
    "spine": [150, 150, 10],
    "back": [150, 160, 30],
    "hip": [130, 220, 25],
    "leg": [130, 280, 20],
    "knee": [130, 320, 18],
    "ankle": [130, 360, 12],
    "foot": [130, 390, 15],
}


def severity_color(severity: str) -> str:
    return SEVERITY_COLORS.get(severity, "#d1d5db")


def group_by_body_part(findings: Iterable[Finding]) -> Dict[str, List[Finding]]:
    """Group findings by lower-cased body part, keeping first-seen order."""
    grouped: Dict[str, List[Finding]] = {}
    for finding in findings:
        grouped.setdefault(finding.body_part.lower(), []).append(finding)
    return grouped


def _region_fill(region: str, grouped: Dict[str, List[Finding]]) -> str:
    for part, items in grouped.items():
        if region in part:
            return severity_color(items[0].severity)
    return UNAFFECTED_COLOR


def build_diagram(findings: Iterable[Finding]) -> Dict[str, Any]:
    """Return everything the diagram template needs to draw ``findings``."""
    findings = list(findings)
    grouped = group_by_body_part(findings)

    shapes = []
    for shape in SHAPES:
        fill = _region_fill(shape["region"], grouped)
        shapes.append({**shape, "fill": fill, "affected": fill != UNAFFECTED_COLOR})

    markers = []
    for part, items in grouped.items():
        pos = MARKER_POSITIONS.get(part)
        if not pos:
            continue
        worst = min(items, key=lambda f: SEVERITIES.index(f.severity))
        markers.append(
            {
                "part": part,
                "cx": pos[0],
                "cy": pos[1],
                "r": pos[2],
                "severity": worst.severity,
                "color": severity_color(worst.severity),
                "title": ", ".join(f"{f.condition} ({f.severity})" for f in items),
            }
        )

    counts = Counter(f.severity for f in findings)
    return {
        "canvas": CANVAS,
        "shapes": shapes,
        "markers": markers,
        "legend": [
            {"severity": s, "label": s.capitalize(), "color": SEVERITY_COLORS[s]}
            for s in SEVERITIES
        ],
        "counts": {s: counts.get(s, 0) for s in SEVERITIES},
        "total": len(findings),
    }
