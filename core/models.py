import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from core.components import (
    ComponentNature, DeviceKind, Enclosure, Grounding, LineLink, Phase,
    ProtectionHeader, TerminalLine,
)

class BoardType(Enum):
    MAIN = "TP"                 # tablero principal (root)
    GENERAL_SECTIONAL = "TSG"
    SECTIONAL = "TS"

class SurfaceKind(Enum):
    COVERED = "covered"
    SEMI_COVERED = "semi_covered"

class LoadUnit(Enum):
    VA = "VA"
    W = "W"

class WorkKind(Enum):
    NEW = "new"
    EXISTING = "existing"       # Res. 54/2018 regularization

class Status(Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"

@dataclass
class SpecialLoad:
    id: str
    name: str
    type: str                   # circuit type code: ACU, APM, TUE, IUE, MBTF...
    value: float = 0.0
    unit: LoadUnit = LoadUnit.VA
    points: int = 1
    three_phase: bool = False
    nature: ComponentNature = ComponentNature.DESIGNED

@dataclass
class Environment:
    id: str
    name: str
    surface: float = 0.0
    surface_kind: SurfaceKind = SurfaceKind.COVERED
    lighting_points: int = 0
    socket_points: int = 0
    # Retrofit split; used only when the plain counts are zero
    lighting_surveyed: int = 0
    lighting_planned: int = 0
    socket_surveyed: int = 0
    socket_planned: int = 0
    special_loads: List[SpecialLoad] = field(default_factory=list)
    board_id: Optional[str] = None
    assigned_lighting_circuit: Optional[str] = None
    assigned_socket_circuit: Optional[str] = None

    @property
    def total_lighting_points(self) -> int:
        if self.lighting_points:
            return self.lighting_points
        return self.lighting_surveyed + self.lighting_planned

    @property
    def total_socket_points(self) -> int:
        if self.socket_points:
            return self.socket_points
        return self.socket_surveyed + self.socket_planned

@dataclass
class CircuitInventoryItem:
    id: str                     # label, e.g. "IUG-1", "TUG-2", "ACU-env3-1"
    type: str
    description: str = ""
    points: int = 0
    power: float = 0.0          # VA
    section: float = 0.0        # mm2
    breaker_rating: float = 0.0
    voltage: int = 220
    three_phase: bool = False
    installation: TerminalLine = field(default_factory=TerminalLine)
    board_id: Optional[str] = None
    header_id: Optional[str] = None
    phase: Optional[Phase] = None
    nature: ComponentNature = ComponentNature.DESIGNED
    environment_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_assigned(self) -> bool:
        return self.board_id is not None

    @property
    def current(self) -> float:
        if self.voltage <= 0:
            return 0.0
        if self.three_phase:
            return self.power / (self.voltage * math.sqrt(3))
        return self.power / self.voltage

@dataclass
class Board:
    id: str
    name: str
    type: BoardType = BoardType.SECTIONAL
    parent_id: Optional[str] = None
    voltage: int = 220
    incoming_line: LineLink = field(default_factory=LineLink)
    headers: List[ProtectionHeader] = field(default_factory=list)
    enclosure: Enclosure = field(default_factory=Enclosure)
    grounding: Grounding = field(default_factory=Grounding)
    nature: ComponentNature = ComponentNature.DESIGNED

    def main_breaker(self) -> Optional[ProtectionHeader]:
        """Thermal-magnetic header heading the board, preferring one without a parent header."""
        breakers = [h for h in self.headers if h.kind == DeviceKind.THERMAL_MAGNETIC]
        for h in breakers:
            if not h.parent_protection_id:
                return h
        return breakers[0] if breakers else None

    @property
    def is_three_phase(self) -> bool:
        # A 380V board headed by a 2-pole device only uses one phase
        if self.voltage < 380:
            return False
        if not self.headers:
            return True
        four_pole = [h for h in self.headers if h.poles == 4]
        return bool(four_pole) or self.headers[0].poles != 2

@dataclass
class ProjectConfig:
    destination: str = "vivienda"
    surface_area: float = 0.0
    voltage: int = 220
    variant_index: int = 0
    work_kind: WorkKind = WorkKind.NEW
    segment_vdrop_limit: float = 3.0     # % per line segment
    total_vdrop_limit: float = 5.0       # % accumulated from the origin
    preexisting_vdrop: float = 0.0       # % upstream of the root board (buildings)
    imbalance_limit: float = 20.0        # %
    reserve_modules_min: int = 2

    @property
    def three_phase(self) -> bool:
        return self.voltage >= 380

@dataclass
class Project:
    config: ProjectConfig = field(default_factory=ProjectConfig)
    environments: List[Environment] = field(default_factory=list)
    boards: Dict[str, Board] = field(default_factory=dict)
    circuits: List[CircuitInventoryItem] = field(default_factory=list)

# --- Results ---

@dataclass
class CircuitVariant:
    lighting: int
    sockets: int
    free: int = 0

    @property
    def total(self) -> int:
        return self.lighting + self.sockets + self.free

@dataclass
class DemandResult:
    lighting_load: float
    socket_load: float
    special_load: float
    installed_load: float
    dpms: float
    current: float
    grade: str
    simultaneity: float
    variant: CircuitVariant
    sla: float
    lighting_points: int
    socket_points: int
    warnings: List[str] = field(default_factory=list)

    @property
    def dpms_kw(self) -> float:
        return self.dpms * 0.85 / 1000.0

@dataclass
class SelectionResult:
    section: float
    rating: float
    iz: float
    valid: bool
    warnings: List[str] = field(default_factory=list)

@dataclass
class AmpacityDetail:
    base: float
    grouping_factor: float
    temp_factor: float
    corrected: float

@dataclass
class CoordinationResult:
    is_valid: bool
    ib: float = 0.0
    rating: float = 0.0
    iz: float = 0.0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

@dataclass
class SelectivityResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

@dataclass
class VoltageDropResult:
    local: float
    accumulated: float
    path: List[str] = field(default_factory=list)
    computable: bool = True
    exceeds_segment: bool = False
    exceeds_total: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def exceeds_limit(self) -> bool:
        return self.exceeds_segment or self.exceeds_total

@dataclass
class ModuleCalculation:
    circuit_modules: int
    protection_modules: int
    reserve_modules: int
    total_required: int
    suggested: int
    justification: str = ""

@dataclass
class Diagnostics:
    board_id: str
    dpms: float
    ib: float
    iz: float
    rating: float
    ampacity: AmpacityDetail
    coordination: CoordinationResult
    circuit_validations: Dict[str, CoordinationResult]
    protection_hierarchy: CoordinationResult
    voltage_drop: VoltageDropResult
    selectivity: SelectivityResult
    modules: ModuleCalculation
    status: Status = Status.OK
    warnings: List[str] = field(default_factory=list)

@dataclass
class PhaseBalance:
    loads: Dict[Phase, float]
    imbalance: float
    exceeds_limit: bool
    warnings: List[str] = field(default_factory=list)

@dataclass
class MutationResult:
    applied: bool
    boards: Dict[str, Board]
    circuits: List[CircuitInventoryItem]
    errors: List[str] = field(default_factory=list)

@dataclass
class InventoryDiff:
    proposed: List[CircuitInventoryItem]
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)
