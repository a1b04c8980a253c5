import logging
from dataclasses import replace
from typing import Dict, List, Optional

from .components import Phase
from .models import CircuitInventoryItem, PhaseBalance, ProjectConfig

logger = logging.getLogger(__name__)

PHASES = (Phase.R, Phase.S, Phase.T)

def _is_three_phase(circuit: CircuitInventoryItem) -> bool:
    return circuit.three_phase or circuit.phase == Phase.RST

def phase_loads(circuits: List[CircuitInventoryItem]) -> Dict[Phase, float]:
    """Single-phase circuits load their phase (R when unset), three-phase circuits a third on each."""
    loads = {p: 0.0 for p in PHASES}
    for c in circuits:
        if _is_three_phase(c):
            for p in PHASES:
                loads[p] += c.power / 3
        else:
            loads[c.phase or Phase.R] += c.power
    return loads

def evaluate_phase_balance(circuits: List[CircuitInventoryItem], config: ProjectConfig) -> Optional[PhaseBalance]:
    """
    (max - min) / max * 100 between loaded phases, or over R, S and T when a single
    phase carries everything. A loaded project with an empty phase always exceeds
    the limit. None for single-phase projects.
    """
    if not config.three_phase:
        return None

    loads = phase_loads(circuits)
    warnings = []
    unset = [c.id for c in circuits if not _is_three_phase(c) and c.phase is None]
    if unset:
        warnings.append(f"Circuitos sin fase asignada (se cuentan en R): {', '.join(unset)}")

    loaded = [v for v in loads.values() if v > 0]
    highest = max(loads.values())
    lowest = min(loaded) if len(loaded) > 1 else min(loads.values())
    imbalance = (highest - lowest) / highest * 100 if highest > 0 else 0.0

    empty = [p.value for p in PHASES if loads[p] == 0]
    exceeds = imbalance > config.imbalance_limit or (highest > 0 and bool(empty))
    if imbalance > config.imbalance_limit:
        warnings.append(f"Desequilibrio de fases {imbalance:.1f}% supera el {config.imbalance_limit:g}%")
    if highest > 0 and empty:
        warnings.append(f"Fases sin carga: {', '.join(empty)}")
    return PhaseBalance(loads=loads, imbalance=imbalance, exceeds_limit=exceeds, warnings=warnings)

def suggest_phase_assignment(circuits: List[CircuitInventoryItem]) -> List[CircuitInventoryItem]:
    """
    Places single-phase circuits on the least loaded phase, largest first.
    Returns copies in the original order; three-phase circuits are untouched.
    """
    loads = {p: 0.0 for p in PHASES}
    for c in circuits:
        if _is_three_phase(c):
            for p in PHASES:
                loads[p] += c.power / 3

    chosen = {}
    for c in sorted((c for c in circuits if not _is_three_phase(c)), key=lambda c: (-c.power, c.id)):
        phase = min(PHASES, key=lambda p: (loads[p], PHASES.index(p)))
        loads[phase] += c.power
        chosen[c.id] = phase

    return [replace(c, phase=chosen[c.id]) if c.id in chosen else c for c in circuits]
