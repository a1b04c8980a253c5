from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List

from .components import LineLink
from .models import CircuitInventoryItem, SelectionResult

class DistributionBoardCalculator(ABC):

    @abstractmethod
    def compute_ampacity(self, line: LineLink, voltage: int) -> float:
        """Corrected ampacity Iz of a line. Returns 0 when the combination is not tabulated."""
        pass

    @abstractmethod
    def select_cable_and_protection(self, ib: float, circuit_type: str, method: str, voltage: int) -> SelectionResult:
        """Smallest section/rating pair with Ib <= In <= min(Iz, max rating of the type)."""
        pass

    @abstractmethod
    def valid_breaker_options(self, circuit: CircuitInventoryItem) -> List[float]:
        """Ladder ratings admissible for the circuit's current section."""
        pass

    @abstractmethod
    def voltage_drop(self, current: float, line: LineLink, voltage: int, three_phase: bool = False) -> float:
        """Voltage drop of a line in percent of the nominal voltage."""
        pass

    def circuit_line(self, circuit: CircuitInventoryItem) -> LineLink:
        """LineLink equivalent of a terminal circuit run."""
        inst = circuit.installation
        return LineLink(
            method=inst.method,
            material=inst.material,
            section=circuit.section,
            length=inst.average_length,
            grouping_count=inst.grouping_count,
            conduit_size=inst.conduit_size,
            nature=circuit.nature,
        )

    def size_circuit(self, circuit: CircuitInventoryItem) -> CircuitInventoryItem:
        """Returns a copy of the circuit with the selected section and breaker."""
        result = self.select_cable_and_protection(
            circuit.current, circuit.type, circuit.installation.method, circuit.voltage
        )
        return replace(
            circuit,
            section=result.section,
            breaker_rating=result.rating,
            warnings=list(circuit.warnings) + result.warnings,
        )
