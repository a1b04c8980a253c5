from dataclasses import dataclass
from enum import Enum
from typing import Optional

class ComponentNature(Enum):
    EXISTING = "existing"    # surveyed on site (retrofit)
    DESIGNED = "designed"

class ConductorMaterial(Enum):
    COPPER = "Cu"
    ALUMINUM = "Al"

class ConduitMaterial(Enum):
    PVC = "PVC"
    METAL = "Metal"

class DeviceKind(Enum):
    THERMAL_MAGNETIC = "PIA"
    RESIDUAL_CURRENT = "ID"

class TripCurve(Enum):
    B = "B"
    C = "C"
    D = "D"

class Phase(Enum):
    R = "R"
    S = "S"
    T = "T"
    RST = "RST"

@dataclass
class LineLink:
    """Supply line segment: a board's incoming line or a terminal circuit run."""
    method: str = "B1"                 # IRAM installation method code (B1, B2, D1, D2)
    material: ConductorMaterial = ConductorMaterial.COPPER
    section: float = 4.0               # mm2
    length: float = 0.0                # m
    grouping_count: int = 1
    ambient_temp: Optional[float] = None   # None -> reference temperature of the method
    conduit_material: ConduitMaterial = ConduitMaterial.PVC
    conduit_size: Optional[str] = None
    source_phase: Optional[Phase] = None   # single-phase board fed from a three-phase parent
    source_protection_id: Optional[str] = None
    notes: str = ""
    nature: ComponentNature = ComponentNature.DESIGNED

@dataclass
class TerminalLine:
    """Installation descriptor of a terminal circuit."""
    method: str = "B1"
    average_length: float = 10.0
    conduit_size: Optional[str] = None
    material: ConductorMaterial = ConductorMaterial.COPPER
    grouping_count: int = 1

@dataclass
class ProtectionHeader:
    id: str
    name: str
    kind: DeviceKind = DeviceKind.THERMAL_MAGNETIC
    rating: float = 0.0
    poles: int = 2
    phase: Optional[Phase] = None
    curve: Optional[TripCurve] = None        # thermal-magnetic only
    sensitivity_ma: Optional[int] = None     # residual-current only
    breaking_capacity_ka: float = 4.5
    parent_protection_id: Optional[str] = None
    nature: ComponentNature = ComponentNature.DESIGNED

    @property
    def is_breaker(self) -> bool:
        return self.kind == DeviceKind.THERMAL_MAGNETIC

    @property
    def is_residual(self) -> bool:
        return self.kind == DeviceKind.RESIDUAL_CURRENT

@dataclass
class Enclosure:
    modules: Optional[int] = None
    ip_rating: str = "IP40"
    material: str = "plastic"

@dataclass
class Grounding:
    present: bool = False
    conductor_section: float = 4.0     # mm2, green-yellow
    resistance_ohm: Optional[float] = None
