import logging
import math
from typing import List, Optional

from core.calculator import DistributionBoardCalculator
from core.components import ConductorMaterial, LineLink
from core.models import AmpacityDetail, CircuitInventoryItem, SelectionResult
from standards.aea_tables import (
    DEFAULT_TABLES, CircuitTypeSpec, ReferenceTables, get_grouping_factor, get_temp_correction,
)

logger = logging.getLogger(__name__)

# Used when a circuit type code is not in the tables
FALLBACK_TYPE = CircuitTypeSpec("?", "Circuito sin especificación", "specific", 15, 63, 2.5, 2.5)

class AEACalculator(DistributionBoardCalculator):
    """AEA 90364-7-770/771 sizing of terminal circuits and board feeders."""

    def __init__(self, tables: ReferenceTables = DEFAULT_TABLES):
        self.tables = tables

    def normalize_method(self, method: Optional[str]) -> str:
        """
        Reduces a stored method descriptor to its code.
        "B1 - Embutido" -> "B1", "Enterrado" -> "D1", None -> "B1".
        """
        if not method:
            return "B1"
        text = method.strip()
        parts = text.split(" - ")
        if len(parts) > 1 and len(parts[0].strip()) <= 3:
            return parts[0].strip().upper()
        lowered = text.lower()
        for alias, code in self.tables.method_aliases.items():
            if alias in lowered:
                return code
        return text.upper()

    def is_buried(self, method: str) -> bool:
        return self.normalize_method(method) in self.tables.buried_methods

    def base_ampacity(self, method: str, material: ConductorMaterial, section: float, voltage: int) -> float:
        key = (self.normalize_method(method), material, 380 if voltage >= 380 else 220)
        column = self.tables.ampacity.get(key)
        if not column:
            logger.debug("No ampacity column for %s", key)
            return 0.0
        return float(column.get(section, 0.0))

    def grouping_factor(self, count: int) -> float:
        return get_grouping_factor(count, self.tables)

    def temperature_factor(self, line: LineLink) -> float:
        return get_temp_correction(line.ambient_temp, self.is_buried(line.method), self.tables)

    def ampacity_detail(self, line: LineLink, voltage: int) -> AmpacityDetail:
        base = self.base_ampacity(line.method, line.material, line.section, voltage)
        fg = self.grouping_factor(line.grouping_count or 1)
        ft = self.temperature_factor(line)
        return AmpacityDetail(base=base, grouping_factor=fg, temp_factor=ft, corrected=base * fg * ft)

    def compute_ampacity(self, line: LineLink, voltage: int) -> float:
        return self.ampacity_detail(line, voltage).corrected

    def circuit_spec(self, circuit_type: str) -> Optional[CircuitTypeSpec]:
        return self.tables.circuit_type(circuit_type)

    def ceil_rating(self, current: float) -> Optional[float]:
        """Smallest ladder rating >= current."""
        for rating in self.tables.breaker_ratings:
            if rating >= current:
                return rating
        return None

    def _candidate_sections(self, spec: CircuitTypeSpec, three_phase: bool) -> List[float]:
        minimum = spec.min_section_three_phase if three_phase else spec.min_section
        sections = [s for s in self.tables.cable_sections if s >= minimum]
        return sections or [self.tables.cable_sections[-1]]

    def select_cable_and_protection(self, ib: float, circuit_type: str, method: str, voltage: int) -> SelectionResult:
        warnings = []
        spec = self.circuit_spec(circuit_type)
        if spec is None:
            warnings.append(f"Tipo de circuito {circuit_type} no encontrado; se usan valores por defecto")
            spec = FALLBACK_TYPE

        three_phase = voltage >= 380
        max_in = spec.max_protection or self.tables.breaker_ratings[-1]
        method = self.normalize_method(method or spec.default_method)
        sections = self._candidate_sections(spec, three_phase)

        last_iz, last_section = 0.0, sections[-1]
        for section in sections:
            iz = self.compute_ampacity(LineLink(method=method, section=section), voltage)
            if iz == 0:
                continue
            last_iz, last_section = iz, section
            upper = min(iz, max_in)
            for rating in self.tables.breaker_ratings:
                if ib <= rating <= upper:
                    if section > sections[0]:
                        warnings.append(f"Sección aumentada de {sections[0]}mm² a {section}mm² para cumplir Ib ≤ In ≤ Iz")
                    margin = (rating - ib) / rating * 100
                    if margin < 10:
                        warnings.append(f"Margen reducido entre Ib ({ib:.2f}A) e In ({rating}A): {margin:.1f}%")
                    return SelectionResult(section=section, rating=rating, iz=iz, valid=True, warnings=warnings)

        # Degraded: largest section, smallest rating covering Ib within the type limit
        rating = self.ceil_rating(ib)
        if rating is None or rating > max_in:
            allowed = [r for r in self.tables.breaker_ratings if r <= max_in]
            rating = allowed[-1] if allowed else self.tables.breaker_ratings[0]
        if last_iz == 0:
            warnings.append(f"Sin datos de Iz para método {method} a {voltage}V")
        if ib > max_in:
            warnings.append(f"Ib ({ib:.2f}A) supera la protección máxima de {spec.code} ({max_in}A); dividir el circuito")
        warnings.append(f"Ninguna sección hasta {last_section}mm² cumple Ib ≤ In ≤ Iz para Ib={ib:.2f}A")
        logger.warning("No compliant selection for %s Ib=%.2fA (%s, %sV)", circuit_type, ib, method, voltage)
        return SelectionResult(section=last_section, rating=rating, iz=last_iz, valid=False, warnings=warnings)

    def valid_breaker_options(self, circuit: CircuitInventoryItem) -> List[float]:
        spec = self.circuit_spec(circuit.type) or FALLBACK_TYPE
        iz = self.compute_ampacity(self.circuit_line(circuit), circuit.voltage)
        upper = min(iz, spec.max_protection or self.tables.breaker_ratings[-1])
        ib = circuit.current
        return [r for r in self.tables.breaker_ratings if ib <= r <= upper]

    def voltage_drop(self, current: float, line: LineLink, voltage: int, three_phase: bool = False) -> float:
        if line.section <= 0 or voltage <= 0:
            return 0.0
        gamma = self.tables.conductivity.get(line.material, 56.0)
        k = math.sqrt(3) if three_phase else 2.0
        return k * line.length * current / (gamma * line.section * voltage) * 100.0
