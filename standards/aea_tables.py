import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

import pandas as pd

from core.components import ConductorMaterial

logger = logging.getLogger(__name__)

TABLES_VERSION = "AEA-90364-7-770/771:2006"

# IRAM NM 247-3 / IRAM 2178 - Admissible current (A) per section (mm2)
# Key: (method, material, voltage) -> {section: Iz}
# 220 = two loaded conductors, 380 = three loaded conductors
AMPACITY = {
    # B1 - in conduit embedded in wall ("Embutido")
    ("B1", ConductorMaterial.COPPER, 220): {1.5: 15, 2.5: 21, 4: 28, 6: 36, 10: 50, 16: 66, 25: 88, 35: 109},
    ("B1", ConductorMaterial.COPPER, 380): {1.5: 13, 2.5: 18, 4: 24, 6: 36, 10: 42, 16: 56, 25: 75, 35: 92},
    ("B1", ConductorMaterial.ALUMINUM, 220): {16: 51, 25: 68, 35: 85},
    ("B1", ConductorMaterial.ALUMINUM, 380): {16: 43, 25: 58, 35: 71},
    # B2 - multicore cable in conduit on wall ("Exterior")
    ("B2", ConductorMaterial.COPPER, 220): {1.5: 14, 2.5: 19, 4: 26, 6: 33, 10: 46, 16: 61, 25: 80, 35: 99},
    ("B2", ConductorMaterial.COPPER, 380): {1.5: 12, 2.5: 17, 4: 22, 6: 29, 10: 39, 16: 52, 25: 68, 35: 83},
    # D1 - multicore cable in buried duct ("Enterrado")
    ("D1", ConductorMaterial.COPPER, 220): {1.5: 29, 2.5: 39, 4: 51, 6: 65, 10: 88, 16: 115, 25: 150, 35: 180},
    ("D1", ConductorMaterial.COPPER, 380): {1.5: 24, 2.5: 33, 4: 43, 6: 55, 10: 75, 16: 100, 25: 130, 35: 155},
    ("D1", ConductorMaterial.ALUMINUM, 220): {16: 89, 25: 116, 35: 140},
    ("D1", ConductorMaterial.ALUMINUM, 380): {16: 78, 25: 101, 35: 120},
    # D2 - directly buried cable
    ("D2", ConductorMaterial.COPPER, 220): {1.5: 25, 2.5: 33, 4: 43, 6: 54, 10: 73, 16: 95, 25: 123, 35: 148},
    ("D2", ConductorMaterial.COPPER, 380): {1.5: 21, 2.5: 28, 4: 36, 6: 46, 10: 62, 16: 81, 25: 106, 35: 127},
}

# AEA 771.16.II - Grouping of circuits
# Format: {Circuit_Count: Factor}; 9 or more -> last value
GROUPING_FACTORS = {1: 1.0, 2: 0.8, 3: 0.7, 4: 0.65, 5: 0.6, 6: 0.57, 7: 0.54, 8: 0.52, 9: 0.5}

# Ambient temperature correction, PVC 70C
# Air reference 40C, ground reference 25C
TEMP_CORRECTION_AIR = {
    10: 1.29, 15: 1.25, 20: 1.22, 25: 1.18, 30: 1.15, 35: 1.1,
    40: 1.0, 45: 0.91, 50: 0.82, 55: 0.71, 60: 0.58,
}
TEMP_CORRECTION_GROUND = {
    10: 1.1, 15: 1.05, 20: 1.03, 25: 1.0, 30: 0.96, 35: 0.92, 40: 0.88, 45: 0.84, 50: 0.8,
}

BURIED_METHODS = ("D1", "D2")

# Legacy free-text method names still found in saved projects
METHOD_ALIASES = {
    "embutido": "B1",
    "exterior": "B2",
    "enterrado": "D1",
}

# AEA 770.8 - Electrification grades by destination and SLA (m2)
# Format: [(Grade, Surface_Min, Surface_Max)]
GRADES = ("minimum", "medium", "high", "superior")
GRADE_SURFACES = {
    "vivienda": [
        ("minimum", 0, 60),
        ("medium", 60, 130),
        ("high", 130, 200),
        ("superior", 200, float("inf")),
    ],
}

# Minimum number of circuits per grade
GRADE_MIN_CIRCUITS = {"minimum": 2, "medium": 3, "high": 5, "superior": 6}

# Simultaneity coefficient of general circuits, by circuit count of the grade
# 2 circuits: 1.0 / 3-4: 0.8 / 5: 0.7 / 6+: 0.6
GRADE_SIMULTANEITY = {"minimum": 1.0, "medium": 0.8, "high": 0.7, "superior": 0.6}

# Format: {Grade: [(IUG, TUG, Free)]}
CIRCUIT_VARIANTS = {
    "minimum": [(1, 1, 0)],
    "medium": [(2, 1, 0), (1, 2, 0)],
    "high": [(2, 3, 0), (3, 2, 0)],
    "superior": [(2, 3, 1), (3, 2, 1)],
}

BREAKER_RATINGS = [6, 10, 16, 20, 25, 32, 40, 50, 63]
CABLE_SECTIONS = [1.5, 2.5, 4, 6, 10, 16, 25, 35]
ENCLOSURE_SIZES = [4, 8, 12, 16, 24, 36, 48]

# Conductivity at operating temperature, m/(ohm.mm2)
CONDUCTIVITY = {ConductorMaterial.COPPER: 56.0, ConductorMaterial.ALUMINUM: 35.0}

EXISTING_INSTALLATION_COEFFICIENT = 0.8   # Res. ENRE 54/2018
POWER_FACTOR = 0.85

@dataclass(frozen=True)
class CircuitTypeSpec:
    code: str
    designation: str
    category: str                   # general / special / specific
    max_points: int = 15            # 0 -> no limit
    max_protection: float = 63
    min_section: float = 2.5
    min_section_three_phase: float = 2.5
    applies_simultaneity: bool = False
    default_method: str = "B1"
    unit_load_va: float = 0.0

CIRCUIT_TYPES = {
    "IUG": CircuitTypeSpec("IUG", "Iluminación de uso general", "general", 15, 16, 1.5, 1.5, True, "B1", 25.0),
    "TUG": CircuitTypeSpec("TUG", "Tomacorrientes de uso general", "general", 15, 20, 2.5, 2.5, True, "B1", 240.0),
    "IUE": CircuitTypeSpec("IUE", "Iluminación de uso especial", "special", 12, 32, 2.5, 2.5, True),
    "TUE": CircuitTypeSpec("TUE", "Tomacorrientes de uso especial", "special", 12, 32, 2.5, 2.5, True),
    "ACU": CircuitTypeSpec("ACU", "Alimentación de carga única", "specific", 1, 32, 2.5, 4),
    "APM": CircuitTypeSpec("APM", "Alimentación de pequeños motores", "specific", 15, 25, 2.5, 2.5),
    "MBTF": CircuitTypeSpec("MBTF", "Muy baja tensión funcional", "specific", 15, 20, 2.5, 2.5),
    "OCE": CircuitTypeSpec("OCE", "Otros circuitos específicos", "specific", 0, 63, 2.5, 4),
    # Surveyed lighting + sockets circuit of an existing installation
    "MIX": CircuitTypeSpec("MIX", "Circuito mixto existente", "general", 0, 20, 2.5, 2.5, True),
}

@dataclass(frozen=True)
class ReferenceTables:
    """Parsed regulatory tables. Passed explicitly to every calculation, never mutated."""
    version: str = TABLES_VERSION
    ampacity: Dict[Tuple[str, ConductorMaterial, int], Dict[float, float]] = field(default_factory=lambda: dict(AMPACITY))
    grouping_factors: Dict[int, float] = field(default_factory=lambda: dict(GROUPING_FACTORS))
    temp_air: Dict[int, float] = field(default_factory=lambda: dict(TEMP_CORRECTION_AIR))
    temp_ground: Dict[int, float] = field(default_factory=lambda: dict(TEMP_CORRECTION_GROUND))
    buried_methods: Tuple[str, ...] = BURIED_METHODS
    method_aliases: Dict[str, str] = field(default_factory=lambda: dict(METHOD_ALIASES))
    grades: Tuple[str, ...] = GRADES
    grade_surfaces: Dict[str, List[Tuple[str, float, float]]] = field(default_factory=lambda: dict(GRADE_SURFACES))
    grade_min_circuits: Dict[str, int] = field(default_factory=lambda: dict(GRADE_MIN_CIRCUITS))
    grade_simultaneity: Dict[str, float] = field(default_factory=lambda: dict(GRADE_SIMULTANEITY))
    circuit_variants: Dict[str, List[Tuple[int, int, int]]] = field(default_factory=lambda: dict(CIRCUIT_VARIANTS))
    circuit_types: Dict[str, CircuitTypeSpec] = field(default_factory=lambda: dict(CIRCUIT_TYPES))
    breaker_ratings: Tuple[float, ...] = tuple(BREAKER_RATINGS)
    cable_sections: Tuple[float, ...] = tuple(CABLE_SECTIONS)
    enclosure_sizes: Tuple[int, ...] = tuple(ENCLOSURE_SIZES)
    conductivity: Dict[ConductorMaterial, float] = field(default_factory=lambda: dict(CONDUCTIVITY))
    default_destination: str = "vivienda"
    existing_coefficient: float = EXISTING_INSTALLATION_COEFFICIENT
    power_factor: float = POWER_FACTOR

    def circuit_type(self, code: str) -> Optional[CircuitTypeSpec]:
        return self.circuit_types.get(code.upper()) if code else None

DEFAULT_TABLES = ReferenceTables()

def get_grouping_factor(count: int, tables: ReferenceTables = DEFAULT_TABLES) -> float:
    """Returns the grouping factor for the number of circuits sharing a run."""
    if count <= 1:
        return 1.0
    largest = max(tables.grouping_factors)
    if count >= largest:
        return tables.grouping_factors[largest]
    return tables.grouping_factors.get(count, 1.0)

def get_temp_correction(temp: Optional[float], buried: bool, tables: ReferenceTables = DEFAULT_TABLES) -> float:
    """
    Returns the temperature correction factor of the nearest tabulated temperature.
    None means the reference temperature of the installation (factor 1.0).
    """
    if temp is None:
        return 1.0
    table = tables.temp_ground if buried else tables.temp_air
    if not table:
        return 1.0
    closest = min(sorted(table), key=lambda t: abs(t - temp))
    return table[closest]

# --- Building tables from already-parsed frames ---

def ampacity_from_frame(df: pd.DataFrame) -> Dict[Tuple[str, ConductorMaterial, int], Dict[float, float]]:
    """
    Columns: method, material (Cu/Al), voltage (220/380 or '220V'), section, iz.
    """
    required = {"method", "material", "voltage", "section", "iz"}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"Ampacity frame missing columns: {sorted(missing)}")

    table: Dict[Tuple[str, ConductorMaterial, int], Dict[float, float]] = {}
    for row in df.itertuples(index=False):
        voltage = int(str(row.voltage).upper().rstrip("V"))
        key = (str(row.method).strip().upper(), ConductorMaterial(str(row.material).strip()), voltage)
        table.setdefault(key, {})[float(row.section)] = float(row.iz)
    return table

def circuit_types_from_frame(df: pd.DataFrame) -> Dict[str, CircuitTypeSpec]:
    """
    Columns: code, designation, category, max_points, max_protection, min_section,
    min_section_three_phase, applies_simultaneity. Optional: default_method, unit_load_va.
    """
    if "code" not in df.columns:
        raise ValueError("Circuit type frame needs a 'code' column")

    df = df.fillna({"max_points": 0, "max_protection": 0, "min_section": 2.5})
    types = {}
    for rec in df.to_dict(orient="records"):
        code = str(rec["code"]).strip().upper()
        min_section = float(rec.get("min_section", 2.5))
        max_protection = float(rec.get("max_protection", 0)) or 63.0
        fs = rec.get("applies_simultaneity", False)
        if isinstance(fs, str):
            fs = fs.strip().lower() in ("sí", "si", "yes", "true", "1")
        types[code] = CircuitTypeSpec(
            code=code,
            designation=str(rec.get("designation", code)),
            category=str(rec.get("category", "specific")),
            max_points=int(rec.get("max_points", 0)),
            max_protection=max_protection,
            min_section=min_section,
            min_section_three_phase=float(rec.get("min_section_three_phase") or min_section),
            applies_simultaneity=bool(fs),
            default_method=str(rec.get("default_method") or "B1"),
            unit_load_va=float(rec.get("unit_load_va") or 0.0),
        )
    return types

def load_tables(ampacity: Optional[pd.DataFrame] = None,
                circuit_types: Optional[pd.DataFrame] = None,
                version: Optional[str] = None,
                base: ReferenceTables = DEFAULT_TABLES) -> ReferenceTables:
    """Returns a new ReferenceTables with the given frames replacing the built-in data."""
    changes = {}
    if ampacity is not None:
        changes["ampacity"] = ampacity_from_frame(ampacity)
    if circuit_types is not None:
        changes["circuit_types"] = circuit_types_from_frame(circuit_types)
    if version:
        changes["version"] = version
    tables = replace(base, **changes)
    logger.debug("Loaded reference tables %s (%d ampacity rows)", tables.version, len(tables.ampacity))
    return tables
