import logging
import math
import re
from dataclasses import replace
from typing import Dict, List, Optional

from .components import ComponentNature, Phase, TerminalLine
from .demand import special_load_va
from .models import (
    Board, CircuitInventoryItem, CircuitVariant, Environment, InventoryDiff, MutationResult,
    ProjectConfig, WorkKind,
)
from standards.aea import AEACalculator
from standards.aea_tables import ReferenceTables

logger = logging.getLogger(__name__)

GENERAL_DESCRIPTIONS = {"IUG": "Iluminación Ref. {n}", "TUG": "Tomas Ref. {n}"}
SURVEY_WARNING = "Instalación existente: relevar sección de cable y protección en obra"

_LABEL_RE = re.compile(r"^([A-Z]+)-(\d+)$")

def label_number(label: str, code: str) -> Optional[int]:
    """'IUG-3' -> 3 for code 'IUG'; None for labels of another type."""
    m = _LABEL_RE.match((label or "").strip().upper())
    if not m or m.group(1) != code:
        return None
    return int(m.group(2))

class _PointPacker:
    """Packs points of one general type into numbered circuits of at most max_points."""

    def __init__(self, code: str, max_points: int):
        self.code = code
        self.max_points = max_points or 15
        self.points: Dict[int, int] = {}
        self.envs: Dict[int, List[str]] = {}

    def _open(self, n: int):
        self.points.setdefault(n, 0)
        self.envs.setdefault(n, [])

    def _add(self, n: int, env_id: str, points: int) -> int:
        """Adds as many points as fit in circuit n. Returns the remainder."""
        self._open(n)
        room = self.max_points - self.points[n]
        taken = min(room, points)
        if taken > 0:
            self.points[n] += taken
            if env_id not in self.envs[n]:
                self.envs[n].append(env_id)
        return points - taken

    def _next_with_room(self) -> int:
        n = 1
        while self.points.get(n, 0) >= self.max_points:
            n += 1
        return n

    def pin(self, n: int, env_id: str, points: int):
        rest = self._add(n, env_id, points)
        if rest:
            logger.debug("%s-%d full, %d points of %s spill over", self.code, n, rest, env_id)
            self.fill(env_id, rest)

    def fill(self, env_id: str, points: int):
        while points > 0:
            points = self._add(self._next_with_room(), env_id, points)

    def circuits(self):
        return [(n, self.points[n], self.envs[n]) for n in sorted(self.points)]

def _pack_general(environments: List[Environment], code: str, max_points: int) -> _PointPacker:
    packer = _PointPacker(code, max_points)
    if code == "IUG":
        count, manual = (lambda e: e.total_lighting_points), (lambda e: e.assigned_lighting_circuit)
    else:
        count, manual = (lambda e: e.total_socket_points), (lambda e: e.assigned_socket_circuit)

    # Manual references first so they keep their labels
    for env in environments:
        n = label_number(manual(env), code)
        if n is not None:
            packer._open(n)
            packer.pin(n, env.id, count(env))
    for env in environments:
        if label_number(manual(env), code) is None and count(env) > 0:
            packer.fill(env.id, count(env))
    return packer

def _general_circuits(environments: List[Environment], calc: AEACalculator) -> List[CircuitInventoryItem]:
    circuits = []
    for code in ("IUG", "TUG"):
        spec = calc.tables.circuit_type(code)
        packer = _pack_general(environments, code, spec.max_points if spec else 15)
        for n, points, env_ids in packer.circuits():
            circuits.append(CircuitInventoryItem(
                id=f"{code}-{n}",
                type=code,
                description=GENERAL_DESCRIPTIONS[code].format(n=n),
                points=points,
                power=points * (spec.unit_load_va if spec else 0.0),
                voltage=220,
                installation=TerminalLine(method=spec.default_method if spec else "B1"),
                environment_ids=list(env_ids),
            ))
    return circuits

def _special_circuits(environments: List[Environment], config: ProjectConfig,
                      calc: AEACalculator) -> List[CircuitInventoryItem]:
    circuits = []
    for env in environments:
        seq: Dict[str, int] = {}
        for load in env.special_loads:
            code = (load.type or "OCE").upper()
            spec = calc.tables.circuit_type(code)
            va = special_load_va(load, calc.tables)
            points = max(load.points or 0, 1)
            max_points = spec.max_points if spec and spec.max_points else points
            chunks = math.ceil(points / max_points)

            warnings = []
            three_phase = load.three_phase
            if three_phase and not config.three_phase:
                warnings.append(f"{load.name}: carga trifásica en proyecto monofásico, se calcula a 220V")
                three_phase = False

            remaining = points
            for _ in range(chunks):
                chunk = min(max_points, remaining)
                remaining -= chunk
                seq[code] = seq.get(code, 0) + 1
                circuits.append(CircuitInventoryItem(
                    id=f"{code}-{env.id}-{seq[code]}",
                    type=code,
                    description=f"{load.name} ({env.name})",
                    points=chunk,
                    power=va * chunk / points,
                    voltage=config.voltage if three_phase else 220,
                    three_phase=three_phase,
                    installation=TerminalLine(method=spec.default_method if spec else "B1"),
                    phase=Phase.RST if three_phase else None,
                    nature=load.nature,
                    environment_ids=[env.id],
                    warnings=list(warnings),
                ))
    return circuits

def _existing_circuits(environments: List[Environment], calc: AEACalculator) -> List[CircuitInventoryItem]:
    """Surveyed circuits of an existing installation, grouped by manual label or environment."""
    iug = calc.tables.circuit_type("IUG")
    tug = calc.tables.circuit_type("TUG")
    groups: Dict[str, dict] = {}
    for env in environments:
        key = env.assigned_lighting_circuit or f"MIX-{env.id}"
        group = groups.setdefault(key, {"lighting": 0, "sockets": 0, "special": 0.0, "names": [], "ids": []})
        group["lighting"] += env.lighting_surveyed or env.lighting_points
        group["sockets"] += env.socket_surveyed or env.socket_points
        group["special"] += sum(special_load_va(s, calc.tables) for s in env.special_loads)
        group["names"].append(env.name)
        group["ids"].append(env.id)

    circuits = []
    for label, group in groups.items():
        if group["lighting"] and not group["sockets"]:
            code = "IUG"
        elif group["sockets"] and not group["lighting"]:
            code = "TUG"
        else:
            code = "MIX"
        power = group["lighting"] * iug.unit_load_va + group["sockets"] * tug.unit_load_va + group["special"]
        circuits.append(CircuitInventoryItem(
            id=label,
            type=code,
            description=", ".join(group["names"]),
            points=group["lighting"] + group["sockets"],
            power=power,
            voltage=220,
            nature=ComponentNature.EXISTING,
            environment_ids=group["ids"],
            warnings=[SURVEY_WARNING],
        ))
    return circuits

def build_circuit_inventory(environments: List[Environment], config: ProjectConfig,
                            calc: AEACalculator) -> List[CircuitInventoryItem]:
    """
    Derives the terminal circuits of the project. Deterministic for identical input.
    Every circuit is sized and starts unassigned.
    """
    environments = environments or []
    if config.work_kind == WorkKind.EXISTING:
        # Cable and breaker are surveyed on site, not selected
        return _existing_circuits(environments, calc)

    circuits = _general_circuits(environments, calc) + _special_circuits(environments, config, calc)
    sized = [calc.size_circuit(c) for c in circuits]
    logger.debug("Built inventory with %d circuits", len(sized))
    return sized

# --- Regeneration: propose, then commit or discard ---

def _differs(old: CircuitInventoryItem, new: CircuitInventoryItem) -> bool:
    return (
        old.type != new.type
        or old.points != new.points
        or round(old.power, 3) != round(new.power, 3)
        or old.section != new.section
        or old.breaker_rating != new.breaker_rating
        or old.three_phase != new.three_phase
        or sorted(old.environment_ids) != sorted(new.environment_ids)
    )

def propose_regeneration(current: List[CircuitInventoryItem], environments: List[Environment],
                         config: ProjectConfig, calc: AEACalculator) -> InventoryDiff:
    """
    Rebuilds the inventory without touching the current one. Circuits that survive keep
    their installation, board, header and phase. A conflict is a removed or changed
    circuit that is bound to a board.
    """
    existing = {c.id: c for c in current}
    built = build_circuit_inventory(environments, config, calc)

    diff = InventoryDiff(proposed=[])
    for item in built:
        old = existing.get(item.id)
        if old is None:
            diff.added.append(item.id)
            diff.proposed.append(item)
            continue
        if item.nature == ComponentNature.DESIGNED and old.installation != item.installation:
            base = replace(item, installation=old.installation, warnings=[])
            item = calc.size_circuit(base)
        item = replace(item, board_id=old.board_id, header_id=old.header_id,
                       phase=old.phase if old.phase and old.three_phase == item.three_phase else item.phase)
        if _differs(old, item):
            diff.changed.append(item.id)
            if old.is_assigned:
                diff.conflicts.append(item.id)
        else:
            diff.kept.append(item.id)
        diff.proposed.append(item)

    proposed_ids = {c.id for c in built}
    for old in current:
        if old.id not in proposed_ids:
            diff.removed.append(old.id)
            if old.is_assigned:
                diff.conflicts.append(old.id)

    if diff.conflicts:
        logger.info("Regeneration affects assigned circuits: %s", ", ".join(diff.conflicts))
    return diff

def commit_regeneration(current: List[CircuitInventoryItem], diff: InventoryDiff, confirmed: bool = False,
                        boards: Optional[Dict[str, Board]] = None) -> MutationResult:
    boards = boards if boards is not None else {}
    if diff.conflicts and not confirmed:
        return MutationResult(
            applied=False,
            boards=boards,
            circuits=list(current),
            errors=[f"Regenerar afecta circuitos asignados: {', '.join(diff.conflicts)}. Se requiere confirmación"],
        )
    return MutationResult(applied=True, boards=boards, circuits=list(diff.proposed))

def unassign_environment_circuits(circuits: List[CircuitInventoryItem], env_id: str) -> List[CircuitInventoryItem]:
    """Circuits derived only from a deleted environment become unassigned; none are dropped."""
    result = []
    for c in circuits:
        if c.environment_ids == [env_id] and c.is_assigned:
            c = replace(c, board_id=None, header_id=None)
        result.append(c)
    return result

# --- Checks ---

def check_minimum_circuits(circuits: List[CircuitInventoryItem], variant: CircuitVariant) -> List[str]:
    warnings = []
    lighting = sum(1 for c in circuits if c.type == "IUG")
    sockets = sum(1 for c in circuits if c.type == "TUG")
    if lighting < variant.lighting:
        warnings.append(f"Se requieren al menos {variant.lighting} circuitos IUG (hay {lighting})")
    if sockets < variant.sockets:
        warnings.append(f"Se requieren al menos {variant.sockets} circuitos TUG (hay {sockets})")
    if len(circuits) < variant.total:
        warnings.append(f"Se requieren al menos {variant.total} circuitos en total (hay {len(circuits)})")
    return warnings

def check_points_limits(circuits: List[CircuitInventoryItem], tables: ReferenceTables) -> List[str]:
    warnings = []
    for c in circuits:
        spec = tables.circuit_type(c.type)
        if spec and spec.max_points and c.points > spec.max_points:
            warnings.append(f"{c.id}: {c.points} bocas superan el máximo de {spec.max_points}")
    return warnings
