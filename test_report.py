import io
import unittest

import pandas as pd
from openpyxl import load_workbook

from core.components import LineLink, ProtectionHeader
from core.diagnostics import diagnose_all
from core.inventory import build_circuit_inventory
from core.models import Board, BoardType, Environment, Project, ProjectConfig, SurfaceKind
from core.report import (
    ENVIRONMENT_COLUMNS, circuit_schedule, consolidated_summary, diagnostics_table, environment_template,
    environments_from_frame, export_workbook,
)
from standards.aea import AEACalculator

def sample_project():
    calc = AEACalculator()
    environments = [Environment(id="env1", name="Living", surface=40, lighting_points=10, socket_points=8)]
    config = ProjectConfig()
    circuits = build_circuit_inventory(environments, config, calc)
    circuits[0].board_id = "TP"
    boards = {
        "TP": Board(id="TP", name="Tablero Principal", type=BoardType.MAIN,
                    headers=[ProtectionHeader(id="Q1", name="PIA 25A", rating=25)],
                    incoming_line=LineLink(section=6, length=10)),
    }
    return Project(config=config, environments=environments, boards=boards, circuits=circuits), calc

class TestSchedule(unittest.TestCase):
    def test_columns_and_values(self):
        project, calc = sample_project()
        df = circuit_schedule(project.circuits, calc, project.boards)
        self.assertEqual(list(df["Circuito"]), ["IUG-1", "TUG-1"])
        self.assertIn("Iz (A)", df.columns)
        row = df.iloc[1]
        self.assertEqual(row["Sección (mm²)"], 2.5)
        self.assertEqual(row["Protección (A)"], 10)
        self.assertEqual(row["Iz (A)"], 21)
        self.assertEqual(row["Tablero"], "Sin asignar")
        self.assertEqual(df.iloc[0]["Tablero"], "Tablero Principal")

    def test_unsized_circuit(self):
        project, calc = sample_project()
        project.circuits[0].section = 0
        project.circuits[0].breaker_rating = 0
        row = circuit_schedule(project.circuits, calc).iloc[0]
        self.assertEqual(row["Sección (mm²)"], "Relevar")
        self.assertEqual(row["Iz (A)"], 0)

class TestDiagnosticsTable(unittest.TestCase):
    def test_one_row_per_board(self):
        project, calc = sample_project()
        diagnostics = diagnose_all(project.config, project.boards, project.circuits, calc)
        df = diagnostics_table(diagnostics, project.boards)
        self.assertEqual(len(df), 1)
        self.assertEqual(df.iloc[0]["In (A)"], 25)
        self.assertEqual(df.iloc[0]["Tipo"], "TP")

class TestSummary(unittest.TestCase):
    def test_totals(self):
        project, calc = sample_project()
        summary = consolidated_summary(project, calc)
        self.assertEqual(summary["grade"], "minimum")
        self.assertEqual(summary["dpms"], 2170)
        self.assertEqual(summary["power_by_type"], {"IUG": 250, "TUG": 1920})
        self.assertEqual(summary["orphan_circuits"], ["TUG-1"])
        self.assertEqual(summary["circuit_count"], 2)
        self.assertIsNone(summary["phase_imbalance"])
        self.assertEqual(summary["boards"][0]["id"], "TP")

class TestWorkbook(unittest.TestCase):
    def test_export_to_bytes(self):
        project, calc = sample_project()
        data = export_workbook(project, calc)
        wb = load_workbook(io.BytesIO(data))
        self.assertEqual(wb.sheetnames, ["Resumen", "Circuitos", "Tableros"])
        ws = wb["Circuitos"]
        self.assertEqual(ws["A1"].value, "Circuito")
        self.assertTrue(ws["A1"].font.bold)
        self.assertEqual(ws["A2"].value, "IUG-1")

class TestEnvironmentImport(unittest.TestCase):
    def test_template_reads_back(self):
        envs = environments_from_frame(environment_template())
        self.assertEqual([e.id for e in envs], ["env1", "env2"])
        self.assertEqual(envs[1].surface_kind, SurfaceKind.SEMI_COVERED)
        self.assertEqual(envs[0].socket_points, 3)

    def test_blank_cells(self):
        df = pd.DataFrame([{"Ambiente": "Baño", "Bocas IUG": None, "Bocas TUG": 1}])
        envs = environments_from_frame(df)
        self.assertEqual(envs[0].lighting_points, 0)
        self.assertEqual(envs[0].surface, 0)

    def test_missing_columns(self):
        with self.assertRaises(ValueError):
            environments_from_frame(pd.DataFrame([{"Ambiente": "Living"}], columns=ENVIRONMENT_COLUMNS[:1]))

if __name__ == '__main__':
    unittest.main()
