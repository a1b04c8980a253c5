import logging
from dataclasses import replace
from typing import Callable, Dict, Iterator, List, Optional

from .components import ProtectionHeader
from .models import Board, BoardType, CircuitInventoryItem, MutationResult

logger = logging.getLogger(__name__)

Boards = Dict[str, Board]

def index_boards(boards: List[Board]) -> Boards:
    return {b.id: b for b in boards}

def find_root(boards: Boards) -> Optional[Board]:
    roots = [b for b in boards.values() if not b.parent_id]
    for b in roots:
        if b.type == BoardType.MAIN:
            return b
    return roots[0] if roots else None

def children_of(board_id: str, boards: Boards) -> List[Board]:
    return [b for b in boards.values() if b.parent_id == board_id and b.id != board_id]

def walk_ancestors(start_id: str, parent_of: Callable[[str], Optional[str]]) -> Iterator[str]:
    """
    Yields the ancestors of start_id, nearest first. Works for any parent relation
    (boards, protection headers). Stops at a repeated node so a corrupt cycle ends the walk.
    """
    seen = {start_id}
    current = parent_of(start_id)
    while current:
        yield current
        if current in seen:
            return
        seen.add(current)
        current = parent_of(current)

def has_cycle(start_id: str, parent_of: Callable[[str], Optional[str]]) -> bool:
    seen = set()
    for node in walk_ancestors(start_id, parent_of):
        if node == start_id or node in seen:
            return True
        seen.add(node)
    return False

def _board_parent(boards: Boards) -> Callable[[str], Optional[str]]:
    def parent_of(board_id: str) -> Optional[str]:
        board = boards.get(board_id)
        return board.parent_id if board else None
    return parent_of

def ancestors_of(board_id: str, boards: Boards) -> List[str]:
    return list(walk_ancestors(board_id, _board_parent(boards)))

def descendants_of(board_id: str, boards: Boards) -> List[str]:
    result, stack, seen = [], [board_id], {board_id}
    while stack:
        for child in children_of(stack.pop(), boards):
            if child.id not in seen:
                seen.add(child.id)
                result.append(child.id)
                stack.append(child.id)
    return result

def can_be_parent(boards: Boards, candidate_parent_id: str, child_id: str) -> bool:
    """False when the candidate is the child itself or one of its descendants."""
    if candidate_parent_id == child_id or candidate_parent_id not in boards:
        return False
    return child_id not in ancestors_of(candidate_parent_id, boards)

def validate_hierarchy(boards: Boards) -> List[str]:
    errors = []
    roots = [b for b in boards.values() if not b.parent_id]
    if len(roots) != 1:
        errors.append(f"Debe existir exactamente un tablero principal (hay {len(roots)})")
    for b in boards.values():
        if b.parent_id and b.parent_id not in boards:
            errors.append(f"{b.name}: tablero padre '{b.parent_id}' inexistente")
        elif b.parent_id and has_cycle(b.id, _board_parent(boards)):
            errors.append(f"{b.name}: ciclo en la jerarquía de tableros")
    return errors

# --- Builders. A rejected mutation returns the inputs unchanged. ---

def _rejected(boards: Boards, circuits, message: str) -> MutationResult:
    logger.info("Mutation rejected: %s", message)
    return MutationResult(applied=False, boards=boards, circuits=list(circuits or []), errors=[message])

def add_board(boards: Boards, board: Board, circuits: Optional[List[CircuitInventoryItem]] = None) -> MutationResult:
    if board.id in boards:
        return _rejected(boards, circuits, f"Identificador de tablero duplicado: {board.id}")
    if not board.parent_id:
        if find_root(boards) is not None:
            return _rejected(boards, circuits, "Ya existe un tablero principal")
    elif board.parent_id not in boards:
        return _rejected(boards, circuits, f"Tablero padre '{board.parent_id}' inexistente")
    new_boards = dict(boards)
    new_boards[board.id] = board
    return MutationResult(applied=True, boards=new_boards, circuits=list(circuits or []))

def reparent_board(boards: Boards, board_id: str, new_parent_id: str,
                   circuits: Optional[List[CircuitInventoryItem]] = None) -> MutationResult:
    board = boards.get(board_id)
    if board is None:
        return _rejected(boards, circuits, f"Tablero inexistente: {board_id}")
    if not board.parent_id:
        return _rejected(boards, circuits, "El tablero principal no puede tener padre")
    if not can_be_parent(boards, new_parent_id, board_id):
        return _rejected(boards, circuits, f"{new_parent_id} no puede alimentar a {board_id}: generaría un ciclo")
    new_boards = dict(boards)
    line = board.incoming_line
    if line.source_protection_id:
        line = replace(line, source_protection_id=None)
    new_boards[board_id] = replace(board, parent_id=new_parent_id, incoming_line=line)
    return MutationResult(applied=True, boards=new_boards, circuits=list(circuits or []))

def remove_board(boards: Boards, circuits: List[CircuitInventoryItem], board_id: str) -> MutationResult:
    """Children move to the root and circuits become unassigned; nothing else is deleted."""
    board = boards.get(board_id)
    if board is None:
        return _rejected(boards, circuits, f"Tablero inexistente: {board_id}")
    root = find_root(boards)
    if root is None or root.id == board_id:
        return _rejected(boards, circuits, "No se puede eliminar el tablero principal")

    removed_headers = {h.id for h in board.headers}
    new_boards = {}
    for b in boards.values():
        if b.id == board_id:
            continue
        if b.parent_id == board_id:
            line = b.incoming_line
            if line.source_protection_id in removed_headers:
                line = replace(line, source_protection_id=None)
            b = replace(b, parent_id=root.id, incoming_line=line)
        new_boards[b.id] = b

    new_circuits = [
        replace(c, board_id=None, header_id=None) if c.board_id == board_id else c
        for c in circuits
    ]
    return MutationResult(applied=True, boards=new_boards, circuits=new_circuits)

def assign_circuit(boards: Boards, circuits: List[CircuitInventoryItem], circuit_id: str,
                   board_id: str, header_id: Optional[str] = None) -> MutationResult:
    board = boards.get(board_id)
    if board is None:
        return _rejected(boards, circuits, f"Tablero inexistente: {board_id}")
    if not any(c.id == circuit_id for c in circuits):
        return _rejected(boards, circuits, f"Circuito inexistente: {circuit_id}")
    if header_id and header_id not in {h.id for h in board.headers}:
        return _rejected(boards, circuits, f"La protección {header_id} no pertenece a {board.name}")
    new_circuits = [
        replace(c, board_id=board_id, header_id=header_id) if c.id == circuit_id else c
        for c in circuits
    ]
    return MutationResult(applied=True, boards=boards, circuits=new_circuits)

def unassign_circuit(boards: Boards, circuits: List[CircuitInventoryItem], circuit_id: str) -> MutationResult:
    if not any(c.id == circuit_id for c in circuits):
        return _rejected(boards, circuits, f"Circuito inexistente: {circuit_id}")
    new_circuits = [
        replace(c, board_id=None, header_id=None) if c.id == circuit_id else c
        for c in circuits
    ]
    return MutationResult(applied=True, boards=boards, circuits=new_circuits)

# --- Protection header tree ---

def index_headers(boards: Boards) -> Dict[str, ProtectionHeader]:
    return {h.id: h for b in boards.values() for h in b.headers}

def header_owner(boards: Boards) -> Dict[str, str]:
    return {h.id: b.id for b in boards.values() for h in b.headers}

def header_parent_fn(header_index: Dict[str, ProtectionHeader]) -> Callable[[str], Optional[str]]:
    def parent_of(header_id: str) -> Optional[str]:
        header = header_index.get(header_id)
        return header.parent_protection_id if header else None
    return parent_of

def _header_parent_allowed(boards: Boards, board_id: str, parent_header_id: str) -> bool:
    owner = header_owner(boards).get(parent_header_id)
    return owner == board_id or owner in ancestors_of(board_id, boards)

def add_header(boards: Boards, board_id: str, header: ProtectionHeader,
               circuits: Optional[List[CircuitInventoryItem]] = None) -> MutationResult:
    board = boards.get(board_id)
    if board is None:
        return _rejected(boards, circuits, f"Tablero inexistente: {board_id}")
    if header.id in index_headers(boards):
        return _rejected(boards, circuits, f"Identificador de protección duplicado: {header.id}")
    if header.parent_protection_id and not _header_parent_allowed(boards, board_id, header.parent_protection_id):
        return _rejected(boards, circuits, f"Protección padre '{header.parent_protection_id}' no está aguas arriba")
    new_boards = dict(boards)
    new_boards[board_id] = replace(board, headers=list(board.headers) + [header])
    return MutationResult(applied=True, boards=new_boards, circuits=list(circuits or []))

def set_header_parent(boards: Boards, header_id: str, parent_header_id: Optional[str],
                      circuits: Optional[List[CircuitInventoryItem]] = None) -> MutationResult:
    headers = index_headers(boards)
    owner = header_owner(boards).get(header_id)
    if owner is None:
        return _rejected(boards, circuits, f"Protección inexistente: {header_id}")
    if parent_header_id:
        if parent_header_id not in headers:
            return _rejected(boards, circuits, f"Protección inexistente: {parent_header_id}")
        if not _header_parent_allowed(boards, owner, parent_header_id):
            return _rejected(boards, circuits, f"Protección padre '{parent_header_id}' no está aguas arriba")
        chain = [parent_header_id] + list(walk_ancestors(parent_header_id, header_parent_fn(headers)))
        if header_id in chain:
            return _rejected(boards, circuits, f"{parent_header_id} no puede alimentar a {header_id}: generaría un ciclo")

    board = boards[owner]
    new_headers = [
        replace(h, parent_protection_id=parent_header_id) if h.id == header_id else h
        for h in board.headers
    ]
    new_boards = dict(boards)
    new_boards[owner] = replace(board, headers=new_headers)
    return MutationResult(applied=True, boards=new_boards, circuits=list(circuits or []))

# --- Workflow predicates ---

def orphan_circuits(circuits: List[CircuitInventoryItem]) -> List[CircuitInventoryItem]:
    return [c for c in circuits if not c.is_assigned]

def has_orphan_circuits(circuits: List[CircuitInventoryItem]) -> bool:
    return any(not c.is_assigned for c in circuits)

def circuits_for_board(board_id: str, circuits: List[CircuitInventoryItem]) -> List[CircuitInventoryItem]:
    return [c for c in circuits if c.board_id == board_id]

def boards_missing_headers(boards: Boards) -> List[str]:
    return [b.id for b in boards.values() if not b.headers]

def root_has_headers(boards: Boards) -> bool:
    root = find_root(boards)
    return bool(root and root.headers)
