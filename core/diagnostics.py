import logging
import math
from typing import Dict, List, Optional, Set, Tuple

from .components import ProtectionHeader, TripCurve
from .hierarchy import (
    ancestors_of, children_of, circuits_for_board, has_cycle, header_parent_fn, index_headers, walk_ancestors,
)
from .models import (
    Board, CircuitInventoryItem, CoordinationResult, Diagnostics, ModuleCalculation, ProjectConfig,
    SelectivityResult, Status, VoltageDropResult,
)
from standards.aea import AEACalculator
from standards.aea_tables import ReferenceTables

logger = logging.getLogger(__name__)

OVERLOAD_FACTOR = 1.45          # I2 of IEC 60898 breakers
MIN_BREAKER_RATIO = 1.6         # upstream/downstream In for current selectivity
MIN_SENSITIVITY_RATIO = 3       # upstream/downstream IΔn for residual-current selectivity
CURVE_ORDER = {TripCurve.B: 0, TripCurve.C: 1, TripCurve.D: 2}

Boards = Dict[str, Board]
Headers = Dict[str, ProtectionHeader]

def aggregate_demand(board_id: str, boards: Boards, circuits: List[CircuitInventoryItem],
                     _visited: Optional[Set[str]] = None) -> float:
    """Power of the circuits on the board plus the aggregated power of every child board (VA)."""
    visited = _visited if _visited is not None else set()
    if board_id in visited:
        return 0.0
    visited.add(board_id)
    total = sum(c.power for c in circuits if c.board_id == board_id)
    for child in children_of(board_id, boards):
        total += aggregate_demand(child.id, boards, circuits, visited)
    return total

def board_voltage(board: Board) -> int:
    """Voltage used for Ib and Iz: a 380V board with a 2-pole main header works single-phase."""
    if board.voltage >= 380 and not board.is_three_phase:
        return 220
    return board.voltage

def board_current(board: Board, boards: Boards, circuits: List[CircuitInventoryItem]) -> float:
    dpms = aggregate_demand(board.id, boards, circuits)
    voltage = board_voltage(board)
    if voltage <= 0:
        return 0.0
    if board.is_three_phase:
        return dpms / (voltage * math.sqrt(3))
    return dpms / voltage

def protecting_breaker(board: Board, boards: Boards,
                       header_index: Optional[Headers] = None) -> Tuple[Optional[ProtectionHeader], str]:
    """
    Breaker that protects the board's incoming line: its own main breaker, else the upstream
    header its line is fed from, else the parent's main breaker.
    """
    local = board.main_breaker()
    if local is not None:
        return local, "local"
    headers = header_index if header_index is not None else index_headers(boards)
    source = headers.get(board.incoming_line.source_protection_id or "")
    if source is not None and source.is_breaker:
        return source, "upstream"
    parent = boards.get(board.parent_id or "")
    if parent is not None:
        main = parent.main_breaker()
        if main is not None:
            return main, "parent"
    return None, "none"

def check_coordination(ib: float, rating: float, iz: float) -> CoordinationResult:
    """Ib <= In <= Iz. Iz >= 1.45 In is only reported as a warning."""
    result = CoordinationResult(is_valid=True, ib=ib, rating=rating, iz=iz)
    if rating <= 0:
        result.errors.append("Protección no definida: coordinación no calculable")
    if iz <= 0:
        result.errors.append("Iz no calculable: combinación de método, material y sección sin datos de tabla")
    if result.errors:
        result.is_valid = False
        return result

    if ib > rating:
        result.errors.append(f"Corriente de proyecto ({ib:.1f}A) excede la protección ({rating:g}A)")
    if rating > iz:
        result.errors.append(f"Protección ({rating:g}A) excede la capacidad del cable Iz ({iz:.1f}A)")
    if iz < OVERLOAD_FACTOR * rating:
        result.warnings.append(
            f"Cable ({iz:.1f}A) puede sobrecalentarse antes del disparo térmico. "
            f"Mínimo recomendado: {OVERLOAD_FACTOR * rating:.1f}A"
        )
    result.is_valid = not result.errors
    return result

def _check_pair(child: ProtectionHeader, parent: ProtectionHeader) -> Optional[str]:
    """Rating order between a header and the header feeding it."""
    if child.is_breaker and parent.is_breaker and child.rating > parent.rating:
        return f"{child.name} (PIA {child.rating:g}A) excede a su PIA padre {parent.name} ({parent.rating:g}A)"
    if child.is_residual and parent.is_breaker and child.rating < parent.rating:
        return f"{child.name} (ID {child.rating:g}A) es menor que su PIA padre {parent.name} ({parent.rating:g}A)"
    if child.is_breaker and parent.is_residual and child.rating > parent.rating:
        return f"{child.name} (PIA {child.rating:g}A) excede a su ID padre {parent.name} ({parent.rating:g}A)"
    if child.is_residual and parent.is_residual and child.rating > parent.rating:
        return f"{child.name} (ID {child.rating:g}A) excede a su ID padre {parent.name} ({parent.rating:g}A)"
    return None

def check_protection_chain(breaker_rating: float, header: Optional[ProtectionHeader],
                           header_index: Headers) -> CoordinationResult:
    """Validates a circuit breaker against every header from its own up to the root of the header tree."""
    result = CoordinationResult(is_valid=True, rating=breaker_rating)
    if header is None:
        return result

    parent_of = header_parent_fn(header_index)
    chain = [header]
    for header_id in walk_ancestors(header.id, parent_of):
        parent = header_index.get(header_id)
        if parent is None or parent in chain:
            break
        chain.append(parent)
    if has_cycle(header.id, parent_of):
        result.errors.append(f"Ciclo en la cadena de protecciones de {header.name}")

    for level, protection in enumerate(chain):
        if protection.rating < breaker_rating:
            position = "directa" if level == 0 else f"nivel {level + 1}"
            result.errors.append(
                f"Protección {protection.name} ({protection.rating:g}A, {position}) es menor que el circuito ({breaker_rating:g}A)"
            )
    for child, parent in zip(chain, chain[1:]):
        error = _check_pair(child, parent)
        if error:
            result.errors.append(error)

    result.is_valid = not result.errors
    return result

def validate_protection_hierarchy(headers: List[ProtectionHeader],
                                  header_index: Optional[Headers] = None) -> CoordinationResult:
    index = header_index if header_index is not None else {h.id: h for h in headers}
    parent_of = header_parent_fn(index)
    result = CoordinationResult(is_valid=True)
    for child in headers:
        if not child.parent_protection_id:
            continue
        if has_cycle(child.id, parent_of):
            result.errors.append(f"{child.name}: ciclo en la jerarquía de protecciones")
            continue
        parent = index.get(child.parent_protection_id)
        if parent is None:
            result.warnings.append(f"{child.name}: protección padre '{child.parent_protection_id}' inexistente")
            continue
        error = _check_pair(child, parent)
        if error:
            result.errors.append(error)
    result.is_valid = not result.errors
    return result

def _grade_headers(child: ProtectionHeader, parent: ProtectionHeader, result: SelectivityResult):
    if child.is_breaker and parent.is_breaker:
        if parent.rating == child.rating:
            result.warnings.append(f"{parent.name} y {child.name} tienen igual calibre ({child.rating:g}A): sin selectividad")
        elif child.rating > 0 and parent.rating > child.rating and parent.rating / child.rating < MIN_BREAKER_RATIO:
            result.warnings.append(
                f"Selectividad dudosa entre {parent.name} ({parent.rating:g}A) y {child.name} ({child.rating:g}A): "
                f"relación menor a {MIN_BREAKER_RATIO}"
            )
        if parent.curve and child.curve and CURVE_ORDER[parent.curve] < CURVE_ORDER[child.curve]:
            result.warnings.append(
                f"{parent.name} (curva {parent.curve.value}) es más rápida que {child.name} (curva {child.curve.value})"
            )
    elif child.is_residual and parent.is_residual:
        if not parent.sensitivity_ma or not child.sensitivity_ma:
            result.warnings.append(f"Sensibilidad no definida entre {parent.name} y {child.name}")
        elif parent.sensitivity_ma <= child.sensitivity_ma:
            result.errors.append(
                f"Diferenciales en serie sin escalonar: {parent.name} ({parent.sensitivity_ma}mA) "
                f"y {child.name} ({child.sensitivity_ma}mA). Disparo simultáneo probable"
            )
        elif parent.sensitivity_ma / child.sensitivity_ma < MIN_SENSITIVITY_RATIO:
            result.warnings.append(
                f"Escalonamiento insuficiente entre {parent.name} ({parent.sensitivity_ma}mA) "
                f"y {child.name} ({child.sensitivity_ma}mA): relación menor a {MIN_SENSITIVITY_RATIO}"
            )

def validate_selectivity(board: Board, boards: Boards, circuits: List[CircuitInventoryItem],
                         header_index: Optional[Headers] = None) -> SelectivityResult:
    result = SelectivityResult()
    headers = header_index if header_index is not None else index_headers(boards)
    local_main = board.main_breaker()
    protecting, origin = protecting_breaker(board, boards, headers)

    if local_main is not None:
        limit = local_main.rating
        for c in circuits_for_board(board.id, circuits):
            if c.breaker_rating > limit:
                result.errors.append(
                    f"Térmica general ({limit:g}A) es menor que la del circuito {c.id} ({c.breaker_rating:g}A)"
                )
        for child in children_of(board.id, boards):
            child_main = child.main_breaker()
            if child_main is not None:
                if child_main.rating > limit:
                    result.errors.append(
                        f"Térmica general ({limit:g}A) es menor que la del tablero hijo {child.name} ({child_main.rating:g}A)"
                    )
                continue
            # Child without its own breaker: its circuits are protected from here
            for c in circuits_for_board(child.id, circuits):
                if c.breaker_rating > limit:
                    result.errors.append(
                        f"Térmica general ({limit:g}A) es menor que el circuito {c.id} ({c.breaker_rating:g}A) del tablero hijo {child.name}"
                    )

    if protecting is not None:
        for h in board.headers:
            if h.is_residual and h.rating < protecting.rating:
                where = "térmica general" if origin == "local" else "térmica aguas arriba"
                result.warnings.append(
                    f"Capacidad ID: el diferencial {h.name} ({h.rating:g}A) es menor que la {where} ({protecting.rating:g}A)"
                )

    for h in board.headers:
        parent = headers.get(h.parent_protection_id or "")
        if parent is not None and parent is not h:
            _grade_headers(h, parent, result)

    result.is_valid = not result.errors
    return result

def calculate_suggested_modules(board: Board, circuits: List[CircuitInventoryItem], tables: ReferenceTables,
                                reserve_min: int = 2) -> ModuleCalculation:
    """DIN modules: headers by poles, one bipolar breaker per circuit (tetrapolar if three-phase), plus reserve."""
    circuit_modules = sum(4 if c.three_phase else 2 for c in circuits)
    protection_modules = sum(h.poles for h in board.headers)
    reserve = max(reserve_min, len(circuits))
    total = circuit_modules + protection_modules + reserve

    suggested = next((s for s in tables.enclosure_sizes if s >= total), tables.enclosure_sizes[-1])
    justification = (
        f"{len(circuits)} circuitos ({circuit_modules}) + {protection_modules} protecciones + "
        f"{reserve} reserva = {total} módulos -> {suggested} módulos"
    )
    if total > suggested:
        justification += " (excede el mayor gabinete comercial: dividir el tablero)"
    return ModuleCalculation(
        circuit_modules=circuit_modules,
        protection_modules=protection_modules,
        reserve_modules=reserve,
        total_required=total,
        suggested=suggested,
        justification=justification,
    )

def _local_drop(board: Board, boards: Boards, circuits: List[CircuitInventoryItem],
                calc: AEACalculator) -> Tuple[float, bool]:
    line = board.incoming_line
    if line.section <= 0:
        return 0.0, False
    current = board_current(board, boards, circuits)
    return calc.voltage_drop(current, line, board_voltage(board), board.is_three_phase), True

def board_voltage_drop(board_id: str, boards: Boards, circuits: List[CircuitInventoryItem],
                       config: ProjectConfig, calc: AEACalculator) -> VoltageDropResult:
    """Local drop of the incoming line plus the accumulated drop of every board upstream."""
    board = boards[board_id]
    chain = [a for a in reversed(ancestors_of(board_id, boards)) if a in boards and a != board_id]
    chain = list(dict.fromkeys(chain)) + [board_id]

    warnings = []
    accumulated = max(config.preexisting_vdrop, 0.0)
    local, computable = 0.0, True
    for bid in chain:
        local, ok = _local_drop(boards[bid], boards, circuits, calc)
        if not ok:
            warnings.append(f"{boards[bid].name}: sección de línea no definida, caída no calculable")
            if bid == board_id:
                computable = False
        accumulated += local

    result = VoltageDropResult(
        local=local,
        accumulated=accumulated,
        path=[boards[bid].name for bid in chain],
        computable=computable,
        exceeds_segment=local > config.segment_vdrop_limit,
        exceeds_total=accumulated > config.total_vdrop_limit,
        warnings=warnings,
    )
    if result.exceeds_segment:
        result.warnings.append(f"Caída en {board.name} ({local:.2f}%) supera el {config.segment_vdrop_limit}% por tramo")
    if result.exceeds_total:
        result.warnings.append(f"Caída acumulada ({accumulated:.2f}%) supera el {config.total_vdrop_limit}% total")
    return result

def _downstream_ratings(board: Board, boards: Boards, assigned: List[CircuitInventoryItem]) -> List[Tuple[str, float]]:
    ratings = [(f"circuito {c.id}", c.breaker_rating) for c in assigned if c.breaker_rating > 0]
    for child in children_of(board.id, boards):
        main = child.main_breaker()
        if main is not None:
            ratings.append((f"tablero {child.name}", main.rating))
    return ratings

def diagnose(board: Board, config: ProjectConfig, assigned_circuits: List[CircuitInventoryItem],
             boards: Boards, circuits: List[CircuitInventoryItem], calc: AEACalculator) -> Diagnostics:
    """
    Full technical diagnostics of one board. Every metric degrades to 0 plus a message
    instead of raising so partial results can be shown. The board does not need to be
    in the board map yet.
    """
    boards = {**boards, board.id: board}
    header_index = index_headers(boards)
    dpms = aggregate_demand(board.id, boards, circuits)
    ib = board_current(board, boards, circuits)
    ampacity = calc.ampacity_detail(board.incoming_line, board_voltage(board))
    iz = ampacity.corrected

    breaker, origin = protecting_breaker(board, boards, header_index)
    rating = breaker.rating if breaker else 0.0
    coordination = check_coordination(ib, rating, iz)
    if breaker is not None and origin != "local":
        coordination.warnings.append(f"{board.name} sin térmica propia: se coordina con {breaker.name}")

    if rating > 0:
        for source, downstream in _downstream_ratings(board, boards, assigned_circuits):
            if downstream > rating:
                coordination.errors.append(
                    f"Protección de cabecera ({rating:g}A) menor que la del {source} ({downstream:g}A)"
                )
            elif downstream == rating:
                coordination.warnings.append(
                    f"Protección de cabecera ({rating:g}A) igual a la del {source}: sin selectividad"
                )
        coordination.is_valid = not coordination.errors

    circuit_validations = {}
    for c in assigned_circuits:
        if c.breaker_rating <= 0:
            continue
        result = check_protection_chain(c.breaker_rating, header_index.get(c.header_id or ""), header_index)
        if c.section > 0:
            own = check_coordination(c.current, c.breaker_rating,
                                     calc.compute_ampacity(calc.circuit_line(c), c.voltage))
            result.ib, result.iz = own.ib, own.iz
            result.errors = own.errors + result.errors
            result.warnings = own.warnings + result.warnings
            result.is_valid = not result.errors
        circuit_validations[c.id] = result

    hierarchy = validate_protection_hierarchy(board.headers, header_index)
    vdrop = board_voltage_drop(board.id, boards, circuits, config, calc)
    selectivity = validate_selectivity(board, boards, circuits, header_index)
    modules = calculate_suggested_modules(board, assigned_circuits, calc.tables, config.reserve_modules_min)

    warnings = []
    if board.enclosure.modules is not None and board.enclosure.modules < modules.total_required:
        warnings.append(
            f"Gabinete de {board.enclosure.modules} módulos insuficiente: se requieren {modules.total_required}"
        )
    if not board.headers:
        warnings.append(f"{board.name} sin protecciones de cabecera")

    has_errors = (
        not coordination.is_valid
        or vdrop.exceeds_limit
        or any(not v.is_valid for v in circuit_validations.values())
        or not hierarchy.is_valid
        or not selectivity.is_valid
    )
    if has_errors:
        status = Status.ERROR
    elif coordination.warnings or selectivity.warnings or hierarchy.warnings or vdrop.warnings or warnings:
        status = Status.WARNING
    else:
        status = Status.OK

    if status != Status.OK:
        logger.debug("Board %s diagnosed as %s", board.id, status.value)

    return Diagnostics(
        board_id=board.id,
        dpms=dpms,
        ib=ib,
        iz=iz,
        rating=rating,
        ampacity=ampacity,
        coordination=coordination,
        circuit_validations=circuit_validations,
        protection_hierarchy=hierarchy,
        voltage_drop=vdrop,
        selectivity=selectivity,
        modules=modules,
        status=status,
        warnings=warnings,
    )

def diagnose_all(config: ProjectConfig, boards: Boards, circuits: List[CircuitInventoryItem],
                 calc: AEACalculator) -> Dict[str, Diagnostics]:
    return {
        board.id: diagnose(board, config, circuits_for_board(board.id, circuits), boards, circuits, calc)
        for board in boards.values()
    }
