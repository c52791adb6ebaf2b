"""
FDI (ISO 3950) tooth notation: validation, naming and chart geometry.

Tooth numbers are two-digit strings: quadrant digit then position digit.
- Permanent dentition: quadrants 1-4, positions 1-8 (32 teeth)
- Primary dentition:   quadrants 5-8, positions 1-5 (20 teeth)

Chart geometry is drawn from the clinician's point of view, so the patient's
right side (quadrants 1 and 4) appears on the left of the canvas.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Tuple


# ===============================================================
# Notation tables
# ===============================================================
PERMANENT_QUADRANTS = (1, 2, 3, 4)
PRIMARY_QUADRANTS = (5, 6, 7, 8)

POSITIONS_PER_QUADRANT: Dict[str, int] = {
    "permanent": 8,
    "primary": 5,
}

QUADRANT_NAMES: Dict[int, str] = {
    1: "Upper Right",
    2: "Upper Left",
    3: "Lower Left",
    4: "Lower Right",
    5: "Upper Right (Primary)",
    6: "Upper Left (Primary)",
    7: "Lower Left (Primary)",
    8: "Lower Right (Primary)",
}

PERMANENT_TOOTH_NAMES: Dict[int, str] = {
    1: "Central Incisor",
    2: "Lateral Incisor",
    3: "Canine",
    4: "First Premolar",
    5: "Second Premolar",
    6: "First Molar",
    7: "Second Molar",
    8: "Third Molar (Wisdom)",
}

PRIMARY_TOOTH_NAMES: Dict[int, str] = {
    1: "Central Incisor",
    2: "Lateral Incisor",
    3: "Canine",
    4: "First Molar",
    5: "Second Molar",
}

WORK_TYPES: Tuple[str, ...] = (
    "crown",
    "bridge",
    "filling",
    "implant",
    "denture",
    "veneer",
    "inlay",
    "onlay",
    "root_canal",
    "extraction",
)

_FDI_RE = re.compile(r"^\d{2}$")


# ===============================================================
# Chart geometry constants (SVG user units)
# ===============================================================
CANVAS_CONFIG: Dict[str, int] = {
    "width": 550,
    "height": 300,
    "tooth_gap": 3,
    "quadrant_gap": 18,
    "padding": 20,
}

TOOTH_DIMENSIONS: Dict[str, Dict[str, int]] = {
    "central_incisor": {"width": 23, "height": 36},
    "lateral_incisor": {"width": 21, "height": 34},
    "canine": {"width": 22, "height": 37},
    "premolar": {"width": 21, "height": 33},
    "molar": {"width": 25, "height": 32},
}

DEFAULT_TOOTH_SIZE: Dict[str, int] = {"width": 40, "height": 60}


# ===============================================================
# Parsing / validation
# ===============================================================
def _as_text(tooth) -> str:
    if tooth is None:
        return ""
    return str(tooth).strip()


def is_valid_fdi(tooth) -> bool:
    """
    True for 11-18, 21-28, 31-38, 41-48 and 51-55, 61-65, 71-75, 81-85.

    Integers are accepted and compared by their decimal text, so 5 and "5"
    are both rejected (not two digits).
    """
    t = _as_text(tooth)
    if not _FDI_RE.match(t):
        return False

    q, p = int(t[0]), int(t[1])
    if q in PERMANENT_QUADRANTS:
        return 1 <= p <= 8
    if q in PRIMARY_QUADRANTS:
        return 1 <= p <= 5
    return False


def parse_tooth(tooth) -> Tuple[int, int]:
    """
    Return (quadrant, position). Raises ValueError for invalid notation.
    """
    t = _as_text(tooth)
    if not is_valid_fdi(t):
        raise ValueError(f"Invalid FDI tooth number: {t or tooth!r}")
    return int(t[0]), int(t[1])


def quadrant(tooth) -> int:
    return parse_tooth(tooth)[0]


def position(tooth) -> int:
    return parse_tooth(tooth)[1]


def is_primary(tooth) -> bool:
    return quadrant(tooth) in PRIMARY_QUADRANTS


def is_permanent(tooth) -> bool:
    return quadrant(tooth) in PERMANENT_QUADRANTS


# ===============================================================
# Classification and naming
# ===============================================================
def tooth_type(tooth) -> str:
    """
    incisor / canine / premolar / molar.

    Primary dentition has no premolars: positions 4-5 are molars.
    """
    q, p = parse_tooth(tooth)
    if p <= 2:
        return "incisor"
    if p == 3:
        return "canine"
    if q in PRIMARY_QUADRANTS:
        return "molar"
    if p <= 5:
        return "premolar"
    return "molar"


def tooth_name(tooth) -> str:
    q, p = parse_tooth(tooth)
    if q in PRIMARY_QUADRANTS:
        side = QUADRANT_NAMES[q - 4]
        return f"{side} {PRIMARY_TOOTH_NAMES[p]} (Primary)"
    return f"{QUADRANT_NAMES[q]} {PERMANENT_TOOTH_NAMES[p]}"


def format_tooth(tooth) -> str:
    """'11 - Upper Right Central Incisor'; unknown input is returned as-is."""
    t = _as_text(tooth)
    if not is_valid_fdi(t):
        return t
    return f"{t} - {tooth_name(t)}"


def jaw(tooth) -> str:
    q = quadrant(tooth)
    return "upper" if q in (1, 2, 5, 6) else "lower"


def side(tooth) -> str:
    """Patient side: 'right' for quadrants 1, 4, 5, 8."""
    q = quadrant(tooth)
    return "right" if q in (1, 4, 5, 8) else "left"


def is_wisdom_tooth(tooth) -> bool:
    if not is_valid_fdi(tooth):
        return False
    return is_permanent(tooth) and position(tooth) == 8


def is_front_tooth(tooth) -> bool:
    if not is_valid_fdi(tooth):
        return False
    return position(tooth) <= 3


def adjacent_teeth(tooth) -> Dict[str, Optional[str]]:
    """
    Neighbours within the same quadrant.

    mesial: toward the midline (position - 1)
    distal: away from the midline (position + 1)
    Crossing the midline is not modelled; 11 has no mesial neighbour.
    """
    if not is_valid_fdi(tooth):
        return {"mesial": None, "distal": None}

    q, p = parse_tooth(tooth)
    max_pos = 5 if q in PRIMARY_QUADRANTS else 8

    mesial = f"{q}{p - 1}" if p - 1 >= 1 else None
    distal = f"{q}{p + 1}" if p + 1 <= max_pos else None
    return {"mesial": mesial, "distal": distal}


def group_by_quadrant(teeth: Iterable) -> Dict[int, List[str]]:
    """
    Group tooth numbers by quadrant, preserving input order.
    Invalid entries are skipped.
    """
    out: Dict[int, List[str]] = {}
    for t in teeth:
        text = _as_text(t)
        if not is_valid_fdi(text):
            continue
        out.setdefault(int(text[0]), []).append(text)
    return out


def all_permanent_teeth() -> List[str]:
    return [f"{q}{p}" for q in PERMANENT_QUADRANTS for p in range(1, 9)]


def all_primary_teeth() -> List[str]:
    return [f"{q}{p}" for q in PRIMARY_QUADRANTS for p in range(1, 6)]


def is_valid_work_type(work_type) -> bool:
    return _as_text(work_type) in WORK_TYPES


def validate_tooth_selections(selections: Iterable[Dict]) -> None:
    """
    Validate a worksheet tooth selection list.

    Each item is a mapping with `tooth_number` and `work_type`.
    Raises ValueError on duplicates, invalid notation, or missing/unknown work type.
    """
    items = list(selections or [])
    numbers = [_as_text(s.get("tooth_number")) for s in items]

    if len(numbers) != len(set(numbers)):
        raise ValueError("Duplicate tooth numbers found in selection.")

    for number, sel in zip(numbers, items):
        if not is_valid_fdi(number):
            raise ValueError(f"Invalid FDI tooth number: {number}")

        work_type = _as_text(sel.get("work_type"))
        if not work_type:
            raise ValueError(f"Missing work type for tooth {number}.")
        if work_type not in WORK_TYPES:
            raise ValueError(f"Unknown work type '{work_type}' for tooth {number}.")


# ===============================================================
# Chart geometry
# ===============================================================
def tooth_dimensions(tooth) -> Dict[str, int]:
    kind = tooth_type(tooth)
    if kind == "incisor":
        key = "central_incisor" if position(tooth) == 1 else "lateral_incisor"
    else:
        key = kind
    return dict(TOOTH_DIMENSIONS.get(key, DEFAULT_TOOTH_SIZE))


def tooth_coordinates(
    tooth,
    canvas_width: float = CANVAS_CONFIG["width"],
    canvas_height: float = CANVAS_CONFIG["height"],
) -> Dict[str, float]:
    """
    SVG box {x, y, width, height} for a tooth on the dental chart.

    Quadrant layout (clinician's view):

        +---------+---------+
        |  Q1     |  Q2     |   upper jaw
        +---------+---------+
        |  Q4     |  Q3     |   lower jaw
        +---------+---------+

    Each quadrant is centred in its cell; molars sit at the outer edge and
    central incisors meet at the midline. Primary quadrants 5-8 reuse the
    cells of 1-4 with five teeth instead of eight.
    """
    q, p = parse_tooth(tooth)
    dims = tooth_dimensions(tooth)
    width, height = dims["width"], dims["height"]

    gap = CANVAS_CONFIG["tooth_gap"]
    q_gap = CANVAS_CONFIG["quadrant_gap"]
    pad = CANVAS_CONFIG["padding"]

    q_width = (canvas_width - q_gap - 2 * pad) / 2
    q_height = (canvas_height - q_gap - 2 * pad) / 2

    primary = q in PRIMARY_QUADRANTS
    base_q = q - 4 if primary else q

    left_x = pad + q_width / 2
    right_x = pad + q_width + q_gap + q_width / 2
    upper_y = pad + q_height / 2
    lower_y = pad + q_height + q_gap + q_height / 2

    base_x, base_y = {
        1: (left_x, upper_y),
        2: (right_x, upper_y),
        3: (right_x, lower_y),
        4: (left_x, lower_y),
    }[base_q]

    n = 5 if primary else 8
    total_width = n * width + (n - 1) * gap
    start_x = -(total_width / 2)
    offset = (n - p) * (width + gap)

    if base_q in (1, 4):
        x = base_x + start_x + offset
    else:
        x = base_x - start_x - offset - width

    y = base_y - height / 2

    return {"x": x, "y": y, "width": width, "height": height}


def chart_layout(dentition: str = "permanent") -> List[Dict]:
    """
    Full chart for one dentition ('permanent', 'primary' or 'mixed').
    """
    dentition = (dentition or "permanent").strip().lower()
    if dentition == "permanent":
        teeth = all_permanent_teeth()
    elif dentition == "primary":
        teeth = all_primary_teeth()
    elif dentition == "mixed":
        teeth = all_permanent_teeth() + all_primary_teeth()
    else:
        raise ValueError(f"Unknown dentition: {dentition}")

    return [
        {
            "number": t,
            "name": tooth_name(t),
            "quadrant": quadrant(t),
            "position": position(t),
            "type": tooth_type(t),
            "is_primary": is_primary(t),
            **tooth_coordinates(t),
        }
        for t in teeth
    ]


__all__ = [
    "WORK_TYPES",
    "QUADRANT_NAMES",
    "CANVAS_CONFIG",
    "TOOTH_DIMENSIONS",
    "is_valid_fdi",
    "parse_tooth",
    "quadrant",
    "position",
    "is_primary",
    "is_permanent",
    "tooth_type",
    "tooth_name",
    "format_tooth",
    "jaw",
    "side",
    "is_wisdom_tooth",
    "is_front_tooth",
    "adjacent_teeth",
    "group_by_quadrant",
    "all_permanent_teeth",
    "all_primary_teeth",
    "is_valid_work_type",
    "validate_tooth_selections",
    "tooth_dimensions",
    "tooth_coordinates",
    "chart_layout",
]
