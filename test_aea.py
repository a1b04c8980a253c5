import math
import unittest

import pandas as pd

from core.components import ConductorMaterial, LineLink, TerminalLine
from core.models import CircuitInventoryItem
from standards.aea import AEACalculator
from standards.aea_tables import (
    DEFAULT_TABLES, TABLES_VERSION, get_grouping_factor, get_temp_correction, load_tables,
)

class TestCorrectionFactors(unittest.TestCase):
    def test_grouping_factor(self):
        self.assertEqual(get_grouping_factor(1), 1.0)
        self.assertEqual(get_grouping_factor(0), 1.0)
        self.assertEqual(get_grouping_factor(3), 0.7)
        # 9 or more circuits -> 0.5
        self.assertEqual(get_grouping_factor(12), 0.5)

    def test_temperature_nearest_value(self):
        self.assertEqual(get_temp_correction(None, False), 1.0)
        # 32C -> nearest 30C in air table
        self.assertEqual(get_temp_correction(32, False), 1.15)
        # 33C -> nearest 35C
        self.assertEqual(get_temp_correction(33, False), 1.1)
        # Ground table, reference 25C
        self.assertEqual(get_temp_correction(27, True), 1.0)
        self.assertEqual(get_temp_correction(48, True), 0.8)

class TestAmpacity(unittest.TestCase):
    def setUp(self):
        self.calc = AEACalculator()

    def test_normalize_method(self):
        self.assertEqual(self.calc.normalize_method("B1 - Embutido en Pared"), "B1")
        self.assertEqual(self.calc.normalize_method("Embutido"), "B1")
        self.assertEqual(self.calc.normalize_method("Exterior"), "B2")
        self.assertEqual(self.calc.normalize_method("Enterrado"), "D1")
        self.assertEqual(self.calc.normalize_method("d2"), "D2")
        self.assertEqual(self.calc.normalize_method(None), "B1")

    def test_base_ampacity(self):
        line = LineLink(method="B1", section=2.5)
        self.assertEqual(self.calc.compute_ampacity(line, 220), 21)
        self.assertEqual(self.calc.compute_ampacity(line, 380), 18)
        # Legacy names resolve to the same table
        self.assertEqual(self.calc.compute_ampacity(LineLink(method="Enterrado", section=4), 220), 51)

    def test_corrected_ampacity(self):
        # 21A * 0.8 (2 circuits) * 1.15 (30C)
        line = LineLink(method="B1", section=2.5, grouping_count=2, ambient_temp=30)
        detail = self.calc.ampacity_detail(line, 220)
        self.assertEqual(detail.base, 21)
        self.assertEqual(detail.grouping_factor, 0.8)
        self.assertEqual(detail.temp_factor, 1.15)
        self.assertAlmostEqual(detail.corrected, 19.32, places=2)

    def test_unsupported_combination_is_zero(self):
        self.assertEqual(self.calc.compute_ampacity(LineLink(method="X9", section=2.5), 220), 0)
        # Aluminium is not tabulated below 16mm2
        line = LineLink(method="B1", section=2.5, material=ConductorMaterial.ALUMINUM)
        self.assertEqual(self.calc.compute_ampacity(line, 220), 0)

class TestSelection(unittest.TestCase):
    def setUp(self):
        self.calc = AEACalculator()

    def test_lighting_circuit(self):
        # 10 points * 25 VA / 220V = 1.14A
        res = self.calc.select_cable_and_protection(250 / 220, "IUG", "B1", 220)
        self.assertTrue(res.valid)
        self.assertEqual(res.section, 1.5)
        self.assertEqual(res.rating, 6)
        self.assertEqual(res.iz, 15)

    def test_socket_circuit(self):
        # 8 points * 240 VA / 220V = 8.73A
        res = self.calc.select_cable_and_protection(1920 / 220, "TUG", "B1", 220)
        self.assertTrue(res.valid)
        self.assertEqual(res.section, 2.5)
        self.assertEqual(res.rating, 10)

    def test_section_increased(self):
        # 14A needs 16A, above Iz of 1.5mm2 (15A)
        res = self.calc.select_cable_and_protection(14, "IUG", "B1", 220)
        self.assertTrue(res.valid)
        self.assertEqual(res.section, 2.5)
        self.assertEqual(res.rating, 16)
        self.assertTrue(any("Sección aumentada" in w for w in res.warnings))

    def test_reduced_margin_warning(self):
        res = self.calc.select_cable_and_protection(19, "TUG", "B1", 220)
        self.assertTrue(res.valid)
        self.assertEqual(res.rating, 20)
        self.assertTrue(any("Margen reducido" in w for w in res.warnings))

    def test_degraded_result(self):
        # TUG is capped at 20A, 25A can never comply
        res = self.calc.select_cable_and_protection(25, "TUG", "B1", 220)
        self.assertFalse(res.valid)
        self.assertEqual(res.section, 35)
        self.assertEqual(res.rating, 20)
        self.assertTrue(res.warnings)

    def test_unknown_type(self):
        res = self.calc.select_cable_and_protection(5, "ZZZ", "B1", 220)
        self.assertEqual(res.section, 2.5)
        self.assertEqual(res.rating, 6)
        self.assertTrue(any("no encontrado" in w for w in res.warnings))

    def test_three_phase_minimum_section(self):
        res = self.calc.select_cable_and_protection(10, "ACU", "B1", 380)
        self.assertEqual(res.section, 4)
        self.assertEqual(res.rating, 10)
        self.assertEqual(res.iz, 24)

    def test_monotonic_in_ib(self):
        for circuit_type in ("IUG", "TUG", "ACU", "OCE"):
            for voltage in (220, 380):
                last_section, last_rating = 0, 0
                for step in range(0, 161):
                    ib = step * 0.5
                    res = self.calc.select_cable_and_protection(ib, circuit_type, "B1", voltage)
                    self.assertGreaterEqual(res.section, last_section, f"{circuit_type} {voltage}V Ib={ib}")
                    self.assertGreaterEqual(res.rating, last_rating, f"{circuit_type} {voltage}V Ib={ib}")
                    last_section, last_rating = res.section, res.rating

    def test_valid_results_respect_double_inequality(self):
        for step in range(1, 60):
            ib = step * 0.7
            res = self.calc.select_cable_and_protection(ib, "OCE", "B1", 220)
            if res.valid:
                self.assertLessEqual(ib, res.rating)
                self.assertLessEqual(res.rating, res.iz)

class TestBreakerOptions(unittest.TestCase):
    def test_options_for_current_section(self):
        calc = AEACalculator()
        circuit = CircuitInventoryItem(id="TUG-1", type="TUG", power=1920, section=2.5)
        # Ib 8.73A, Iz 21A, TUG max 20A
        self.assertEqual(calc.valid_breaker_options(circuit), [10, 16, 20])

    def test_no_options_when_section_unknown(self):
        calc = AEACalculator()
        circuit = CircuitInventoryItem(id="TUG-1", type="TUG", power=1920, section=0)
        self.assertEqual(calc.valid_breaker_options(circuit), [])

class TestVoltageDrop(unittest.TestCase):
    def setUp(self):
        self.calc = AEACalculator()

    def test_single_phase(self):
        # 2 * 20m * 10A / (56 * 2.5 * 220) * 100
        line = LineLink(section=2.5, length=20)
        self.assertAlmostEqual(self.calc.voltage_drop(10, line, 220), 1.2987, places=3)

    def test_three_phase(self):
        line = LineLink(section=2.5, length=20)
        expected = math.sqrt(3) * 20 * 10 / (56 * 2.5 * 380) * 100
        self.assertAlmostEqual(self.calc.voltage_drop(10, line, 380, three_phase=True), expected)

    def test_aluminium(self):
        line = LineLink(section=16, length=50, material=ConductorMaterial.ALUMINUM)
        expected = 2 * 50 * 30 / (35 * 16 * 220) * 100
        self.assertAlmostEqual(self.calc.voltage_drop(30, line, 220), expected)

    def test_zero_section(self):
        self.assertEqual(self.calc.voltage_drop(10, LineLink(section=0, length=20), 220), 0.0)

class TestTableLoading(unittest.TestCase):
    def test_frames_replace_built_in_data(self):
        ampacity = pd.DataFrame([
            {"method": "b1", "material": "Cu", "voltage": "220V", "section": 2.5, "iz": 24},
            {"method": "B1", "material": "Cu", "voltage": 220, "section": 4, "iz": 32},
        ])
        types = pd.DataFrame([
            {"code": "tug", "designation": "Tomas", "category": "general", "max_points": 15,
             "max_protection": 20, "min_section": 2.5, "applies_simultaneity": "No"},
        ])
        tables = load_tables(ampacity, types, version="test-1")
        self.assertEqual(tables.version, "test-1")
        self.assertEqual(tables.ampacity[("B1", ConductorMaterial.COPPER, 220)], {2.5: 24.0, 4.0: 32.0})
        self.assertEqual(tables.circuit_type("TUG").max_protection, 20)
        self.assertEqual(DEFAULT_TABLES.version, TABLES_VERSION)

        calc = AEACalculator(tables)
        self.assertEqual(calc.compute_ampacity(LineLink(section=2.5), 220), 24)

    def test_missing_columns(self):
        with self.assertRaises(ValueError):
            load_tables(pd.DataFrame([{"method": "B1", "iz": 10}]))

class TestSizeCircuit(unittest.TestCase):
    def test_returns_sized_copy(self):
        calc = AEACalculator(DEFAULT_TABLES)
        circuit = CircuitInventoryItem(id="TUG-1", type="TUG", power=1920, installation=TerminalLine())
        sized = calc.size_circuit(circuit)
        self.assertEqual(sized.section, 2.5)
        self.assertEqual(sized.breaker_rating, 10)
        self.assertEqual(circuit.section, 0.0)

if __name__ == '__main__':
    unittest.main()
