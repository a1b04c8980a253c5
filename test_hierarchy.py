import unittest

from core.components import DeviceKind, LineLink, ProtectionHeader
from core.hierarchy import (
    add_board, add_header, ancestors_of, assign_circuit, boards_missing_headers, can_be_parent, children_of,
    circuits_for_board, descendants_of, find_root, has_orphan_circuits, index_boards, orphan_circuits,
    remove_board, reparent_board, root_has_headers, set_header_parent, unassign_circuit, validate_hierarchy,
    walk_ancestors,
)
from core.models import Board, BoardType, CircuitInventoryItem

def pia(header_id, rating, parent=None):
    return ProtectionHeader(id=header_id, name=header_id, rating=rating, parent_protection_id=parent)

def make_tree():
    return index_boards([
        Board(id="TP", name="TP", type=BoardType.MAIN, headers=[pia("TP-Q1", 40)]),
        Board(id="TSG", name="TSG", type=BoardType.GENERAL_SECTIONAL, parent_id="TP",
              headers=[pia("TSG-Q1", 32)], incoming_line=LineLink(source_protection_id="TP-Q1")),
        Board(id="TS1", name="TS1", parent_id="TSG"),
        Board(id="TS2", name="TS2", parent_id="TSG"),
    ])

def make_chain(depth):
    boards = [Board(id="B0", name="B0", type=BoardType.MAIN)]
    for i in range(1, depth):
        boards.append(Board(id=f"B{i}", name=f"B{i}", parent_id=f"B{i-1}"))
    return index_boards(boards)

class TestNavigation(unittest.TestCase):
    def test_root_and_children(self):
        boards = make_tree()
        self.assertEqual(find_root(boards).id, "TP")
        self.assertEqual([b.id for b in children_of("TSG", boards)], ["TS1", "TS2"])
        self.assertEqual(ancestors_of("TS1", boards), ["TSG", "TP"])
        self.assertEqual(sorted(descendants_of("TP", boards)), ["TS1", "TS2", "TSG"])

    def test_walk_ancestors_stops_on_cycle(self):
        parents = {"A": "B", "B": "C", "C": "A"}
        visited = list(walk_ancestors("A", parents.get))
        self.assertEqual(visited, ["B", "C", "A"])

class TestCanBeParent(unittest.TestCase):
    def test_descendant_cannot_be_parent(self):
        boards = make_tree()
        self.assertFalse(can_be_parent(boards, "TS1", "TP"))
        self.assertFalse(can_be_parent(boards, "TS1", "TSG"))
        self.assertFalse(can_be_parent(boards, "TSG", "TSG"))
        self.assertFalse(can_be_parent(boards, "NOPE", "TS1"))
        self.assertTrue(can_be_parent(boards, "TS1", "TS2"))
        self.assertTrue(can_be_parent(boards, "TP", "TS1"))

    def test_any_depth(self):
        for depth in (2, 5, 12):
            boards = make_chain(depth)
            for i in range(depth):
                for j in range(i + 1, depth):
                    # B_j descends from B_i
                    self.assertFalse(can_be_parent(boards, f"B{j}", f"B{i}"))
                    self.assertTrue(can_be_parent(boards, f"B{i}", f"B{j}"))

class TestValidation(unittest.TestCase):
    def test_valid_tree(self):
        self.assertEqual(validate_hierarchy(make_tree()), [])

    def test_two_roots(self):
        boards = make_tree()
        boards["X"] = Board(id="X", name="X")
        self.assertTrue(validate_hierarchy(boards))

    def test_dangling_parent(self):
        boards = make_tree()
        boards["X"] = Board(id="X", name="X", parent_id="GHOST")
        self.assertTrue(any("GHOST" in e for e in validate_hierarchy(boards)))

    def test_cycle(self):
        boards = make_tree()
        boards["A"] = Board(id="A", name="A", parent_id="B")
        boards["B"] = Board(id="B", name="B", parent_id="A")
        errors = validate_hierarchy(boards)
        self.assertTrue(any("ciclo" in e for e in errors))

class TestBoardMutations(unittest.TestCase):
    def setUp(self):
        self.boards = make_tree()
        self.circuits = [
            CircuitInventoryItem(id="IUG-1", type="IUG", board_id="TSG", header_id="TSG-Q1"),
            CircuitInventoryItem(id="TUG-1", type="TUG", board_id="TS1"),
            CircuitInventoryItem(id="TUG-2", type="TUG"),
        ]

    def test_add_board(self):
        result = add_board(self.boards, Board(id="TS3", name="TS3", parent_id="TP"))
        self.assertTrue(result.applied)
        self.assertIn("TS3", result.boards)
        self.assertNotIn("TS3", self.boards)

    def test_add_board_rejections(self):
        self.assertFalse(add_board(self.boards, Board(id="TS1", name="dup", parent_id="TP")).applied)
        self.assertFalse(add_board(self.boards, Board(id="X", name="root 2")).applied)
        result = add_board(self.boards, Board(id="X", name="X", parent_id="GHOST"))
        self.assertFalse(result.applied)
        self.assertIs(result.boards, self.boards)

    def test_reparent(self):
        result = reparent_board(self.boards, "TS2", "TS1")
        self.assertTrue(result.applied)
        self.assertEqual(result.boards["TS2"].parent_id, "TS1")
        self.assertEqual(self.boards["TS2"].parent_id, "TSG")

    def test_reparent_clears_upstream_header(self):
        result = reparent_board(self.boards, "TSG", "TP")
        self.assertIsNone(result.boards["TSG"].incoming_line.source_protection_id)

    def test_reparent_cycle_rejected(self):
        result = reparent_board(self.boards, "TSG", "TS1")
        self.assertFalse(result.applied)
        self.assertIs(result.boards, self.boards)
        self.assertTrue(result.errors)

    def test_reparent_root_rejected(self):
        self.assertFalse(reparent_board(self.boards, "TP", "TS1").applied)

    def test_remove_board(self):
        result = remove_board(self.boards, self.circuits, "TSG")
        self.assertTrue(result.applied)
        self.assertNotIn("TSG", result.boards)
        self.assertEqual(result.boards["TS1"].parent_id, "TP")
        self.assertEqual(result.boards["TS2"].parent_id, "TP")
        # Circuits are never deleted
        self.assertEqual(len(result.circuits), 3)
        iug = result.circuits[0]
        self.assertIsNone(iug.board_id)
        self.assertIsNone(iug.header_id)
        self.assertEqual(result.circuits[1].board_id, "TS1")
        self.assertEqual(validate_hierarchy(result.boards), [])

    def test_remove_root_rejected(self):
        result = remove_board(self.boards, self.circuits, "TP")
        self.assertFalse(result.applied)
        self.assertEqual(result.circuits, self.circuits)

class TestCircuitAssignment(unittest.TestCase):
    def setUp(self):
        self.boards = make_tree()
        self.circuits = [CircuitInventoryItem(id="IUG-1", type="IUG")]

    def test_assign_and_unassign(self):
        result = assign_circuit(self.boards, self.circuits, "IUG-1", "TSG", "TSG-Q1")
        self.assertTrue(result.applied)
        self.assertEqual(result.circuits[0].board_id, "TSG")
        self.assertIsNone(self.circuits[0].board_id)

        back = unassign_circuit(result.boards, result.circuits, "IUG-1")
        self.assertTrue(back.applied)
        self.assertIsNone(back.circuits[0].board_id)

    def test_header_of_other_board_rejected(self):
        self.assertFalse(assign_circuit(self.boards, self.circuits, "IUG-1", "TSG", "TP-Q1").applied)

    def test_unknown_ids_rejected(self):
        self.assertFalse(assign_circuit(self.boards, self.circuits, "IUG-9", "TSG").applied)
        self.assertFalse(assign_circuit(self.boards, self.circuits, "IUG-1", "GHOST").applied)
        self.assertFalse(unassign_circuit(self.boards, self.circuits, "IUG-9").applied)

class TestHeaderTree(unittest.TestCase):
    def setUp(self):
        self.boards = make_tree()

    def test_add_header(self):
        rcd = ProtectionHeader(id="TSG-ID1", name="ID 40A", kind=DeviceKind.RESIDUAL_CURRENT, rating=40,
                               sensitivity_ma=30, parent_protection_id="TSG-Q1")
        result = add_header(self.boards, "TSG", rcd)
        self.assertTrue(result.applied)
        self.assertEqual(len(result.boards["TSG"].headers), 2)
        self.assertEqual(len(self.boards["TSG"].headers), 1)

    def test_duplicate_header_rejected(self):
        self.assertFalse(add_header(self.boards, "TS1", pia("TP-Q1", 16)).applied)

    def test_parent_must_be_upstream(self):
        # TS1 is not upstream of TP
        boards = add_header(self.boards, "TS1", pia("TS1-Q1", 16)).boards
        self.assertFalse(add_header(boards, "TP", pia("TP-Q2", 16, parent="TS1-Q1")).applied)
        self.assertTrue(add_header(boards, "TS1", pia("TS1-Q2", 10, parent="TP-Q1")).applied)

    def test_header_cycle_rejected(self):
        result = set_header_parent(self.boards, "TSG-Q1", "TP-Q1")
        self.assertTrue(result.applied)
        self.assertEqual(result.boards["TSG"].headers[0].parent_protection_id, "TP-Q1")
        boards = add_header(result.boards, "TP", pia("TP-Q2", 25, parent="TP-Q1")).boards
        # TP-Q1 -> TP-Q2 -> TP-Q1
        loop = set_header_parent(boards, "TP-Q1", "TP-Q2")
        self.assertFalse(loop.applied)
        self.assertIs(loop.boards, boards)
        self.assertTrue(any("ciclo" in e for e in loop.errors))

    def test_header_parent_downstream_rejected(self):
        self.assertFalse(set_header_parent(self.boards, "TP-Q1", "TSG-Q1").applied)

    def test_self_parent_rejected(self):
        self.assertFalse(set_header_parent(self.boards, "TP-Q1", "TP-Q1").applied)

class TestPredicates(unittest.TestCase):
    def test_workflow_gates(self):
        boards = make_tree()
        circuits = [
            CircuitInventoryItem(id="IUG-1", type="IUG", board_id="TP"),
            CircuitInventoryItem(id="TUG-1", type="TUG"),
        ]
        self.assertTrue(has_orphan_circuits(circuits))
        self.assertEqual([c.id for c in orphan_circuits(circuits)], ["TUG-1"])
        self.assertEqual([c.id for c in circuits_for_board("TP", circuits)], ["IUG-1"])
        self.assertEqual(boards_missing_headers(boards), ["TS1", "TS2"])
        self.assertTrue(root_has_headers(boards))
        self.assertFalse(has_orphan_circuits(circuits[:1]))

    def test_root_without_headers(self):
        boards = index_boards([Board(id="TP", name="TP", type=BoardType.MAIN)])
        self.assertFalse(root_has_headers(boards))

if __name__ == '__main__':
    unittest.main()
