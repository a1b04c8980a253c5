import math
import re
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .components import (
    ComponentNature, ConductorMaterial, ConduitMaterial, DeviceKind, Enclosure, Grounding, LineLink, Phase,
    ProtectionHeader, TerminalLine, TripCurve,
)
from .models import (
    Board, BoardType, CircuitInventoryItem, Environment, LoadUnit, Project, ProjectConfig, SpecialLoad,
    SurfaceKind, WorkKind,
)

_QUANTITY_RE = re.compile(r"^\s*([0-9]+(?:[.,][0-9]+)?)\s*([a-zA-Z]*)\s*$")
_RATING_RE = re.compile(r"(?:(\d+)\s*[xX]\s*)?(\d+(?:[.,]\d+)?)\s*A\b")

def split_quantity(text: str, default_unit: str) -> Tuple[float, str]:
    """'2.5 kW' -> (2.5, 'kW'); '1000' -> (1000.0, default_unit)."""
    match = _QUANTITY_RE.match(str(text))
    if not match:
        raise ValueError(f"Cantidad inválida: {text!r}")
    return float(match.group(1).replace(",", ".")), match.group(2) or default_unit

def convert_power_unit(val: float, unit: str, voltage: float = 220, three_phase: bool = False,
                       pf: float = 0.85) -> float:
    """Returns apparent power in VA."""
    unit = unit.strip().upper()

    # Apparent power
    if unit == "VA": return val
    if unit == "KVA": return val * 1000.0

    # Active power
    if unit == "W": return val / pf
    if unit == "KW": return val * 1000.0 / pf
    if unit == "HP": return val * 746.0 / pf

    # Current
    if unit == "A":
        factor = math.sqrt(3) if three_phase else 1.0
        return val * voltage * factor

    raise ValueError(f"Unidad de potencia desconocida: {unit}")

def convert_length_unit(val: float, unit: str) -> float:
    """Returns length in meters."""
    unit = unit.strip().lower()
    if unit in ["m", "mts", "metros", "metro"]: return val
    if unit in ["cm"]: return val / 100.0
    if unit in ["km"]: return val * 1000.0
    raise ValueError(f"Unidad de longitud desconocida: {unit}")

def parse_rating(value: Any) -> float:
    """
    Breaker rating from stored text: 16, '16A', '2x16A' -> 16.0.
    Survey placeholders ('Relevar In') and blanks -> 0.
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if text.lower().startswith("relevar"):
        return 0.0
    match = _RATING_RE.search(text)
    if match:
        return float(match.group(2).replace(",", "."))
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"Calibre inválido: {value!r}")

def parse_section(value: Any) -> float:
    """'2.5mm²', '2,5', 4 -> mm2. Survey placeholders -> 0."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    if text.startswith("relevar"):
        return 0.0
    text = text.replace("mm²", "").replace("mm2", "").replace(",", ".").strip()
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"Sección inválida: {value!r}")

def parse_voltage(value: Any) -> int:
    """'380V', 380, '220' -> volts."""
    if value is None or value == "":
        return 220
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().upper().rstrip("V").strip()
    if not text.isdigit():
        raise ValueError(f"Tensión inválida: {value!r}")
    return int(text)

def parse_poles(value: Any) -> int:
    """'4P', 4 -> 4."""
    if value is None or value == "":
        return 2
    text = str(value).strip().upper().rstrip("P")
    if not text.isdigit():
        raise ValueError(f"Polos inválidos: {value!r}")
    return int(text)

# --- Plain dict graph <-> model ---

def _enum(cls, value, default=None):
    if value is None or value == "":
        return default
    if isinstance(value, cls):
        return value
    try:
        return cls(value)
    except ValueError:
        for member in cls:
            if member.name.lower() == str(value).lower():
                return member
        raise ValueError(f"Valor inválido para {cls.__name__}: {value!r}")

def _require(data: Any, key: str, what: str):
    if not isinstance(data, dict):
        raise ValueError(f"{what} debe ser un objeto, se recibió {type(data).__name__}")
    if not data.get(key):
        raise ValueError(f"{what} sin '{key}'")
    return data[key]

def _opt_float(value) -> Optional[float]:
    return None if value is None or value == "" else float(value)

def line_from_dict(data: Optional[dict]) -> LineLink:
    data = data or {}
    return LineLink(
        method=data.get("method") or "B1",
        material=_enum(ConductorMaterial, data.get("material"), ConductorMaterial.COPPER),
        section=parse_section(data.get("section", 4.0)),
        length=float(data.get("length") or 0.0),
        grouping_count=int(data.get("grouping_count") or 1),
        ambient_temp=_opt_float(data.get("ambient_temp")),
        conduit_material=_enum(ConduitMaterial, data.get("conduit_material"), ConduitMaterial.PVC),
        conduit_size=data.get("conduit_size"),
        source_phase=_enum(Phase, data.get("source_phase")),
        source_protection_id=data.get("source_protection_id"),
        notes=data.get("notes") or "",
        nature=_enum(ComponentNature, data.get("nature"), ComponentNature.DESIGNED),
    )

def header_from_dict(data: dict) -> ProtectionHeader:
    header_id = _require(data, "id", "Protección")
    return ProtectionHeader(
        id=header_id,
        name=data.get("name") or header_id,
        kind=_enum(DeviceKind, data.get("kind"), DeviceKind.THERMAL_MAGNETIC),
        rating=parse_rating(data.get("rating")),
        poles=parse_poles(data.get("poles")),
        phase=_enum(Phase, data.get("phase")),
        curve=_enum(TripCurve, data.get("curve")),
        sensitivity_ma=int(data["sensitivity_ma"]) if data.get("sensitivity_ma") else None,
        breaking_capacity_ka=float(data.get("breaking_capacity_ka") or 4.5),
        parent_protection_id=data.get("parent_protection_id"),
        nature=_enum(ComponentNature, data.get("nature"), ComponentNature.DESIGNED),
    )

def board_from_dict(data: dict) -> Board:
    board_id = _require(data, "id", "Tablero")
    enclosure = data.get("enclosure") or {}
    grounding = data.get("grounding") or {}
    return Board(
        id=board_id,
        name=data.get("name") or board_id,
        type=_enum(BoardType, data.get("type"), BoardType.SECTIONAL),
        parent_id=data.get("parent_id"),
        voltage=parse_voltage(data.get("voltage")),
        incoming_line=line_from_dict(data.get("incoming_line")),
        headers=[header_from_dict(h) for h in data.get("headers") or []],
        enclosure=Enclosure(
            modules=int(enclosure["modules"]) if enclosure.get("modules") else None,
            ip_rating=enclosure.get("ip_rating") or "IP40",
            material=enclosure.get("material") or "plastic",
        ),
        grounding=Grounding(
            present=bool(grounding.get("present", False)),
            conductor_section=parse_section(grounding.get("conductor_section", 4.0)),
            resistance_ohm=_opt_float(grounding.get("resistance_ohm")),
        ),
        nature=_enum(ComponentNature, data.get("nature"), ComponentNature.DESIGNED),
    )

def special_load_from_dict(data: dict) -> SpecialLoad:
    load_id = _require(data, "id", "Carga especial")
    value, unit = data.get("value", 0.0), data.get("unit")
    if isinstance(value, str):
        value, unit = split_quantity(value, unit or "VA")
    unit = (unit or "VA").upper()
    three_phase = bool(data.get("three_phase", False))
    if unit not in ("VA", "W"):
        # kVA, kW, HP and A are stored as VA
        value = convert_power_unit(float(value or 0.0), unit, three_phase=three_phase)
        unit = "VA"
    return SpecialLoad(
        id=load_id,
        name=data.get("name") or load_id,
        type=(data.get("type") or "OCE").upper(),
        value=float(value or 0.0),
        unit=_enum(LoadUnit, unit, LoadUnit.VA),
        points=int(data.get("points") or 1),
        three_phase=three_phase,
        nature=_enum(ComponentNature, data.get("nature"), ComponentNature.DESIGNED),
    )

def environment_from_dict(data: dict) -> Environment:
    env_id = _require(data, "id", "Ambiente")
    return Environment(
        id=env_id,
        name=data.get("name") or env_id,
        surface=float(data.get("surface") or 0.0),
        surface_kind=_enum(SurfaceKind, data.get("surface_kind"), SurfaceKind.COVERED),
        lighting_points=int(data.get("lighting_points") or 0),
        socket_points=int(data.get("socket_points") or 0),
        lighting_surveyed=int(data.get("lighting_surveyed") or 0),
        lighting_planned=int(data.get("lighting_planned") or 0),
        socket_surveyed=int(data.get("socket_surveyed") or 0),
        socket_planned=int(data.get("socket_planned") or 0),
        special_loads=[special_load_from_dict(s) for s in data.get("special_loads") or []],
        board_id=data.get("board_id"),
        assigned_lighting_circuit=data.get("assigned_lighting_circuit"),
        assigned_socket_circuit=data.get("assigned_socket_circuit"),
    )

def circuit_from_dict(data: dict) -> CircuitInventoryItem:
    circuit_id = _require(data, "id", "Circuito")
    inst = data.get("installation") or {}
    return CircuitInventoryItem(
        id=circuit_id,
        type=(data.get("type") or "").upper(),
        description=data.get("description") or "",
        points=int(data.get("points") or 0),
        power=float(data.get("power") or 0.0),
        section=parse_section(data.get("section")),
        breaker_rating=parse_rating(data.get("breaker_rating")),
        voltage=parse_voltage(data.get("voltage")),
        three_phase=bool(data.get("three_phase", False)),
        installation=TerminalLine(
            method=inst.get("method") or "B1",
            average_length=10.0 if inst.get("average_length") is None else float(inst["average_length"]),
            conduit_size=inst.get("conduit_size"),
            material=_enum(ConductorMaterial, inst.get("material"), ConductorMaterial.COPPER),
            grouping_count=int(inst.get("grouping_count") or 1),
        ),
        board_id=data.get("board_id"),
        header_id=data.get("header_id"),
        phase=_enum(Phase, data.get("phase")),
        nature=_enum(ComponentNature, data.get("nature"), ComponentNature.DESIGNED),
        environment_ids=list(data.get("environment_ids") or []),
        warnings=list(data.get("warnings") or []),
    )

def config_from_dict(data: Optional[dict]) -> ProjectConfig:
    data = data or {}
    defaults = ProjectConfig()
    return ProjectConfig(
        destination=data.get("destination") or defaults.destination,
        surface_area=float(data.get("surface_area") or 0.0),
        voltage=parse_voltage(data.get("voltage")),
        variant_index=int(data.get("variant_index") or 0),
        work_kind=_enum(WorkKind, data.get("work_kind"), WorkKind.NEW),
        segment_vdrop_limit=float(data.get("segment_vdrop_limit") or defaults.segment_vdrop_limit),
        total_vdrop_limit=float(data.get("total_vdrop_limit") or defaults.total_vdrop_limit),
        preexisting_vdrop=float(data.get("preexisting_vdrop") or 0.0),
        imbalance_limit=float(data.get("imbalance_limit") or defaults.imbalance_limit),
        reserve_modules_min=int(data.get("reserve_modules_min") or defaults.reserve_modules_min),
    )

def project_from_dict(data: dict) -> Project:
    if not isinstance(data, dict):
        raise ValueError("El proyecto debe ser un objeto")
    boards = {}
    for raw in data.get("boards") or []:
        board = board_from_dict(raw)
        if board.id in boards:
            raise ValueError(f"Identificador de tablero duplicado: {board.id}")
        boards[board.id] = board
    return Project(
        config=config_from_dict(data.get("config")),
        environments=[environment_from_dict(e) for e in data.get("environments") or []],
        boards=boards,
        circuits=[circuit_from_dict(c) for c in data.get("circuits") or []],
    )

def to_plain(obj: Any) -> Any:
    """Dataclasses, enums and containers -> JSON-ready values."""
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj):
        return {f.name: to_plain(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {(k.value if isinstance(k, Enum) else k): to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain(v) for v in obj]
    return obj

def project_to_dict(project: Project) -> Dict[str, Any]:
    return {
        "config": to_plain(project.config),
        "environments": to_plain(project.environments),
        "boards": [to_plain(b) for b in project.boards.values()],
        "circuits": to_plain(project.circuits),
    }
