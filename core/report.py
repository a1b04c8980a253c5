import io
import logging
from collections import OrderedDict
from typing import Dict, List, Optional

import pandas as pd
from openpyxl.styles import Font, PatternFill

from .demand import calculate_project_demand
from .diagnostics import diagnose_all
from .hierarchy import orphan_circuits
from .inventory import check_minimum_circuits, check_points_limits
from .models import Board, CircuitInventoryItem, Diagnostics, Environment, Project, SurfaceKind
from .phase_balance import evaluate_phase_balance
from standards.aea import AEACalculator

logger = logging.getLogger(__name__)

ENVIRONMENT_COLUMNS = ["Ambiente", "Superficie (m²)", "Semicubierto", "Bocas IUG", "Bocas TUG"]

def consolidated_summary(project: Project, calc: AEACalculator,
                         diagnostics: Optional[Dict[str, Diagnostics]] = None) -> dict:
    """Project totals: demand, power by circuit type, per-board results and circuit checks."""
    demand = calculate_project_demand(project.environments, project.config, calc.tables)
    if diagnostics is None:
        diagnostics = diagnose_all(project.config, project.boards, project.circuits, calc)

    power_by_type = OrderedDict()
    for c in project.circuits:
        power_by_type[c.type] = power_by_type.get(c.type, 0.0) + c.power

    boards = []
    for board_id, diag in diagnostics.items():
        board = project.boards[board_id]
        boards.append({
            "id": board_id,
            "name": board.name,
            "type": board.type.value,
            "dpms": diag.dpms,
            "ib": diag.ib,
            "rating": diag.rating,
            "iz": diag.iz,
            "status": diag.status.value,
        })

    balance = evaluate_phase_balance(project.circuits, project.config)
    return {
        "grade": demand.grade,
        "sla": demand.sla,
        "installed_load": demand.installed_load,
        "dpms": demand.dpms,
        "current": demand.current,
        "simultaneity": demand.simultaneity,
        "power_by_type": dict(power_by_type),
        "boards": boards,
        "minimum_circuits": demand.variant.total,
        "circuit_count": len(project.circuits),
        "circuit_warnings": check_minimum_circuits(project.circuits, demand.variant)
                            + check_points_limits(project.circuits, calc.tables),
        "orphan_circuits": [c.id for c in orphan_circuits(project.circuits)],
        "phase_imbalance": balance.imbalance if balance else None,
        "tables_version": calc.tables.version,
    }

def circuit_schedule(circuits: List[CircuitInventoryItem], calc: AEACalculator,
                     boards: Optional[Dict[str, Board]] = None) -> pd.DataFrame:
    rows = []
    for c in circuits:
        board = (boards or {}).get(c.board_id or "")
        iz = calc.compute_ampacity(calc.circuit_line(c), c.voltage) if c.section > 0 else 0.0
        rows.append({
            "Circuito": c.id,
            "Tipo": c.type,
            "Descripción": c.description,
            "Bocas": c.points,
            "Potencia (VA)": round(c.power, 1),
            "Ib (A)": round(c.current, 2),
            "Sección (mm²)": c.section or "Relevar",
            "Protección (A)": c.breaker_rating or "Relevar",
            "Iz (A)": round(iz, 1),
            "Método": calc.normalize_method(c.installation.method),
            "Tablero": board.name if board else (c.board_id or "Sin asignar"),
            "Fase": c.phase.value if c.phase else "",
            "Naturaleza": c.nature.value,
            "Observaciones": " | ".join(c.warnings),
        })
    return pd.DataFrame(rows)

def diagnostics_table(diagnostics: Dict[str, Diagnostics], boards: Dict[str, Board]) -> pd.DataFrame:
    rows = []
    for board_id, d in diagnostics.items():
        board = boards[board_id]
        rows.append({
            "Tablero": board.name,
            "Tipo": board.type.value,
            "DPMS (VA)": round(d.dpms, 1),
            "Ib (A)": round(d.ib, 2),
            "In (A)": d.rating,
            "Iz base (A)": d.ampacity.base,
            "Fg": d.ampacity.grouping_factor,
            "Ft": d.ampacity.temp_factor,
            "Iz (A)": round(d.iz, 1),
            "ΔV local (%)": round(d.voltage_drop.local, 2),
            "ΔV acum. (%)": round(d.voltage_drop.accumulated, 2),
            "Módulos": d.modules.suggested,
            "Estado": d.status.value,
            "Errores": " | ".join(d.coordination.errors + d.selectivity.errors + d.protection_hierarchy.errors),
            "Advertencias": " | ".join(
                d.coordination.warnings + d.selectivity.warnings + d.voltage_drop.warnings + d.warnings
            ),
        })
    return pd.DataFrame(rows)

def _style_sheet(ws):
    header_fill = PatternFill(start_color="DDDDDD", end_color="DDDDDD", fill_type="solid")
    header_font = Font(bold=True)
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
    for col in ws.columns:
        ws.column_dimensions[col[0].column_letter].width = 15

def export_workbook(project: Project, calc: AEACalculator, path: Optional[str] = None) -> Optional[bytes]:
    """
    Writes the calculation workbook. Returns the bytes when no path is given.
    """
    diagnostics = diagnose_all(project.config, project.boards, project.circuits, calc)
    summary = consolidated_summary(project, calc, diagnostics)

    summary_df = pd.DataFrame([
        {"Parámetro": "Grado de electrificación", "Valor": summary["grade"]},
        {"Parámetro": "Superficie límite (m²)", "Valor": round(summary["sla"], 2)},
        {"Parámetro": "Carga instalada (VA)", "Valor": round(summary["installed_load"], 1)},
        {"Parámetro": "DPMS (VA)", "Valor": round(summary["dpms"], 1)},
        {"Parámetro": "Corriente de proyecto (A)", "Valor": round(summary["current"], 2)},
        {"Parámetro": "Coeficiente de simultaneidad", "Valor": summary["simultaneity"]},
        {"Parámetro": "Circuitos (mínimo / actual)",
         "Valor": f"{summary['minimum_circuits']} / {summary['circuit_count']}"},
        {"Parámetro": "Tablas", "Valor": summary["tables_version"]},
    ])
    sheets = {
        "Resumen": summary_df,
        "Circuitos": circuit_schedule(project.circuits, calc, project.boards),
        "Tableros": diagnostics_table(diagnostics, project.boards),
    }

    output = path if path else io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        for name, df in sheets.items():
            df.to_excel(writer, index=False, sheet_name=name)
            _style_sheet(writer.sheets[name])
    logger.info("Workbook exported with %d circuits and %d boards", len(project.circuits), len(project.boards))
    return None if path else output.getvalue()

# --- Environment template import ---

def environment_template() -> pd.DataFrame:
    return pd.DataFrame([
        {"Ambiente": "Living", "Superficie (m²)": 20, "Semicubierto": "No", "Bocas IUG": 2, "Bocas TUG": 3},
        {"Ambiente": "Galería", "Superficie (m²)": 8, "Semicubierto": "Sí", "Bocas IUG": 1, "Bocas TUG": 1},
    ], columns=ENVIRONMENT_COLUMNS)

def environments_from_frame(df: pd.DataFrame) -> List[Environment]:
    missing = [c for c in ("Ambiente", "Bocas IUG", "Bocas TUG") if c not in df.columns]
    if missing:
        raise ValueError(f"Columnas faltantes: {', '.join(missing)}")

    df = df.fillna({"Superficie (m²)": 0, "Semicubierto": "No", "Bocas IUG": 0, "Bocas TUG": 0})
    environments = []
    for i, row in enumerate(df.to_dict(orient="records"), start=1):
        semi = str(row.get("Semicubierto", "No")).strip().lower() in ("sí", "si", "yes", "x", "1", "true")
        environments.append(Environment(
            id=f"env{i}",
            name=str(row["Ambiente"]),
            surface=float(row.get("Superficie (m²)", 0)),
            surface_kind=SurfaceKind.SEMI_COVERED if semi else SurfaceKind.COVERED,
            lighting_points=int(row["Bocas IUG"]),
            socket_points=int(row["Bocas TUG"]),
        ))
    return environments
