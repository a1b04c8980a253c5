import argparse
import json
import logging
import sys

import pandas as pd

from core.converters import project_from_dict, project_to_dict
from core.demand import calculate_project_demand
from core.diagnostics import diagnose_all
from core.hierarchy import has_orphan_circuits, root_has_headers, validate_hierarchy
from core.inventory import build_circuit_inventory, check_minimum_circuits, commit_regeneration, propose_regeneration
from core.phase_balance import evaluate_phase_balance
from core.report import circuit_schedule, diagnostics_table, environments_from_frame, export_workbook
from standards.aea import AEACalculator

def load_project(path):
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as e:
        raise ValueError(f"{path}: JSON inválido ({e})")
    return project_from_dict(data)

def print_demand(demand):
    print("\n--- Demanda del Proyecto ---")
    print(f"Grado de electrificación: {demand.grade} (SLA {demand.sla:.1f} m²)")
    print(f"Bocas: {demand.lighting_points} IUG / {demand.socket_points} TUG")
    print(f"Carga instalada: {demand.installed_load:.0f} VA")
    print(f"DPMS: {demand.dpms:.0f} VA (coef. {demand.simultaneity})")
    print(f"Corriente de proyecto: {demand.current:.2f} A")
    v = demand.variant
    print(f"Circuitos mínimos: {v.lighting} IUG + {v.sockets} TUG" + (f" + {v.free} libre" if v.free else ""))
    for w in demand.warnings:
        print(f"  [!] {w}")

def regenerate_circuits(project, calc, confirmed):
    """Proposes a new inventory and commits it. Assigned circuits that change need confirmation."""
    diff = propose_regeneration(project.circuits, project.environments, project.config, calc)
    print("\n--- Regeneración de Circuitos ---")
    for label, ids in (("Nuevos", diff.added), ("Eliminados", diff.removed), ("Modificados", diff.changed)):
        if ids:
            print(f"{label}: {', '.join(ids)}")
    if diff.is_empty:
        print("Sin cambios")
    if diff.conflicts:
        print(f"  [!] Circuitos asignados afectados: {', '.join(diff.conflicts)}")

    result = commit_regeneration(project.circuits, diff, confirmed=confirmed, boards=project.boards)
    if not result.applied:
        for e in result.errors:
            print(f"  [X] {e} (usar --confirm)")
        return
    project.circuits = result.circuits

def main(argv=None):
    parser = argparse.ArgumentParser(description="Cálculo de cargas y coordinación AEA 90364")
    parser.add_argument("project", help="Proyecto en JSON (ambientes, tableros, circuitos)")
    parser.add_argument("--environments", help="Planilla Excel de ambientes (reemplaza los del proyecto)")
    parser.add_argument("--regenerate", action="store_true", help="Regenerar el inventario de circuitos")
    parser.add_argument("--confirm", action="store_true",
                        help="Confirmar una regeneración que modifica circuitos asignados")
    parser.add_argument("--excel", help="Exportar memoria de cálculo a .xlsx")
    parser.add_argument("--save", help="Guardar el proyecto resultante en JSON")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    try:
        project = load_project(args.project)
        if args.environments:
            project.environments = environments_from_frame(pd.read_excel(args.environments))
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    calc = AEACalculator()
    demand = calculate_project_demand(project.environments, project.config, calc.tables)
    print("=== CALCULADORA AEA 90364-7-770/771 ===")
    print_demand(demand)

    if not project.circuits:
        project.circuits = build_circuit_inventory(project.environments, project.config, calc)
    elif args.regenerate:
        regenerate_circuits(project, calc, args.confirm)

    pd.set_option("display.width", 200)
    pd.set_option("display.max_columns", 20)
    print("\n--- Circuitos ---")
    print(circuit_schedule(project.circuits, calc, project.boards).to_string(index=False))
    for w in check_minimum_circuits(project.circuits, demand.variant):
        print(f"  [!] {w}")

    errors = validate_hierarchy(project.boards) if project.boards else []
    for e in errors:
        print(f"  [X] {e}")

    if project.boards:
        diagnostics = diagnose_all(project.config, project.boards, project.circuits, calc)
        print("\n--- Tableros ---")
        print(diagnostics_table(diagnostics, project.boards).to_string(index=False))
        if not root_has_headers(project.boards):
            print("  [!] El tablero principal no tiene protecciones de cabecera")
    if has_orphan_circuits(project.circuits):
        print("  [!] Hay circuitos sin asignar a tablero")

    balance = evaluate_phase_balance(project.circuits, project.config)
    if balance is not None:
        print("\n--- Balance de Fases ---")
        for phase, load in balance.loads.items():
            print(f"{phase.value}: {load:.0f} VA")
        print(f"Desequilibrio: {balance.imbalance:.1f}%")
        for w in balance.warnings:
            print(f"  [!] {w}")

    try:
        if args.excel:
            export_workbook(project, calc, args.excel)
            print(f"\nMemoria exportada a: {args.excel}")
        if args.save:
            with open(args.save, "w", encoding="utf-8") as fh:
                json.dump(project_to_dict(project), fh, ensure_ascii=False, indent=2)
            print(f"Proyecto guardado en: {args.save}")
    except OSError as e:
        print(f"Error al guardar: {e}")
        return 1
    return 1 if errors else 0

if __name__ == "__main__":
    sys.exit(main())
