import logging
import math
from typing import List, Optional

from .models import (
    CircuitVariant, DemandResult, Environment, LoadUnit, ProjectConfig, SpecialLoad, SurfaceKind, WorkKind,
)
from standards.aea_tables import DEFAULT_TABLES, ReferenceTables

logger = logging.getLogger(__name__)

SEMI_COVERED_WEIGHT = 0.5

def calculate_sla(environments: List[Environment]) -> float:
    """Surface for grade lookup: covered area plus half of the semi-covered area."""
    total = 0.0
    for env in environments or []:
        surface = env.surface or 0.0
        if env.surface_kind == SurfaceKind.SEMI_COVERED:
            total += surface * SEMI_COVERED_WEIGHT
        else:
            total += surface
    return total

def point_totals(environments: List[Environment]):
    lighting = sum(env.total_lighting_points for env in environments or [])
    sockets = sum(env.total_socket_points for env in environments or [])
    return lighting, sockets

def general_circuits_needed(lighting_points: int, socket_points: int, tables: ReferenceTables = DEFAULT_TABLES) -> int:
    iug = tables.circuit_type("IUG")
    tug = tables.circuit_type("TUG")
    max_l = iug.max_points if iug and iug.max_points else 15
    max_s = tug.max_points if tug and tug.max_points else 15
    return math.ceil(lighting_points / max_l) + math.ceil(socket_points / max_s)

def electrification_grade(destination: str, surface: float,
                          environments: Optional[List[Environment]] = None,
                          tables: ReferenceTables = DEFAULT_TABLES) -> str:
    """
    Grade from the destination table and the surface (SLA when environments are given).
    Environments can raise the grade when their points need more general circuits
    than the grade's minimum.
    """
    minimum = tables.grades[0]
    if environments:
        lighting, sockets = point_totals(environments)
        if lighting + sockets == 0:
            return minimum
        effective = calculate_sla(environments)
    else:
        effective = surface or 0.0

    ranges = tables.grade_surfaces.get(destination)
    if not ranges:
        logger.info("No grade table for destination '%s', using '%s'", destination, tables.default_destination)
        ranges = tables.grade_surfaces.get(tables.default_destination)
    if not ranges:
        return minimum

    grade = ranges[-1][0]
    for name, low, high in ranges:
        if low <= effective < high:
            grade = name
            break

    if environments:
        needed = general_circuits_needed(lighting, sockets, tables)
        index = tables.grades.index(grade) if grade in tables.grades else 0
        while index < len(tables.grades) - 1 and needed > tables.grade_min_circuits.get(tables.grades[index], 0):
            index += 1
        if tables.grades[index] != grade:
            logger.debug("Grade raised from %s to %s (%d general circuits)", grade, tables.grades[index], needed)
        grade = tables.grades[index]
    return grade

def circuit_variant(grade: str, variant_index: int = 0, tables: ReferenceTables = DEFAULT_TABLES) -> CircuitVariant:
    """Minimum IUG/TUG/free circuit counts of the chosen variant. Out of range -> first variant."""
    variants = tables.circuit_variants.get(grade) or tables.circuit_variants.get(tables.grades[0]) or [(1, 1, 0)]
    if variant_index < 0 or variant_index >= len(variants):
        variant_index = 0
    lighting, sockets, free = variants[variant_index]
    return CircuitVariant(lighting=lighting, sockets=sockets, free=free)

def special_load_va(load: SpecialLoad, tables: ReferenceTables = DEFAULT_TABLES) -> float:
    value = load.value or 0.0
    if load.unit == LoadUnit.W:
        return value / tables.power_factor
    return value

def calculate_project_demand(environments: List[Environment], config: ProjectConfig,
                             tables: ReferenceTables = DEFAULT_TABLES) -> DemandResult:
    environments = environments or []
    warnings = []

    iug = tables.circuit_type("IUG")
    tug = tables.circuit_type("TUG")
    lighting_points, socket_points = point_totals(environments)
    lighting_load = lighting_points * (iug.unit_load_va if iug else 0.0)
    socket_load = socket_points * (tug.unit_load_va if tug else 0.0)
    special_load = sum(special_load_va(s, tables) for env in environments for s in env.special_loads)

    grade = electrification_grade(config.destination, config.surface_area, environments, tables)
    variant = circuit_variant(grade, config.variant_index, tables)

    if config.work_kind == WorkKind.EXISTING:
        simultaneity = tables.existing_coefficient
    else:
        simultaneity = tables.grade_simultaneity.get(grade, 1.0)

    general = lighting_load + socket_load
    dpms = general * simultaneity + special_load

    if config.voltage <= 0:
        current = 0.0
        warnings.append("Tensión no definida; corriente no calculable")
    elif config.three_phase:
        current = dpms / (config.voltage * math.sqrt(3))
    else:
        current = dpms / config.voltage

    if not environments:
        warnings.append("Proyecto sin ambientes cargados")

    return DemandResult(
        lighting_load=lighting_load,
        socket_load=socket_load,
        special_load=special_load,
        installed_load=general + special_load,
        dpms=dpms,
        current=current,
        grade=grade,
        simultaneity=simultaneity,
        variant=variant,
        sla=calculate_sla(environments),
        lighting_points=lighting_points,
        socket_points=socket_points,
        warnings=warnings,
    )
