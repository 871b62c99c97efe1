from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Tuple, Type

from .errors import ParseError, UndelimitedJump

logger = logging.getLogger(__name__)


# === Instruction tree ===


class Instruction:
    pass


@dataclass
class MoveLeft(Instruction):
    pass


@dataclass
class MoveRight(Instruction):
    pass


@dataclass
class Increment(Instruction):
    pass


@dataclass
class Decrement(Instruction):
    pass


@dataclass
class Output(Instruction):
    pass


@dataclass
class Input(Instruction):
    pass


@dataclass
class Loop(Instruction):
    body: List[Instruction] = field(default_factory=list)


SYMBOLS: Dict[str, Type[Instruction]] = {
    "<": MoveLeft,
    ">": MoveRight,
    "+": Increment,
    "-": Decrement,
    ".": Output,
    ",": Input,
}

LOOP_OPEN = "["
LOOP_CLOSE = "]"


# === Parser ===


def parse(source: str, offset: int = 0) -> List[Instruction]:
    """Parse ``source`` into an instruction tree.

    Characters other than the eight command symbols are ignored. Error
    positions are character indices into ``source`` shifted by ``offset``,
    no matter how deeply the offending bracket is nested. An unclosed
    ``[`` is reported at the outermost bracket left open.
    """
    chars = list(source)
    instructions: List[Instruction] = []
    # (position of the '[', enclosing sequence) for every loop still open
    open_loops: List[Tuple[int, List[Instruction]]] = []
    current = instructions
    for index, char in enumerate(chars):
        if char in SYMBOLS:
            current.append(SYMBOLS[char]())
        elif char == LOOP_OPEN:
            open_loops.append((index, current))
            current = []
        elif char == LOOP_CLOSE:
            if not open_loops:
                raise UndelimitedJump(offset + index)
            _, enclosing = open_loops.pop()
            enclosing.append(Loop(current))
            current = enclosing
    if open_loops:
        raise UndelimitedJump(offset + open_loops[0][0])

    logger.debug(
        "parsed %d characters into %d instructions",
        len(chars),
        count_instructions(instructions),
    )
    return instructions


def _walk(instructions: Iterable[Instruction]) -> Iterator[Tuple[Instruction, int]]:
    """Yield every node with its loop nesting level, without recursing."""
    stack: List[Tuple[Iterator[Instruction], int]] = [(iter(instructions), 0)]
    while stack:
        nodes, level = stack[-1]
        node = next(nodes, None)
        if node is None:
            stack.pop()
            continue
        yield node, level
        if isinstance(node, Loop):
            stack.append((iter(node.body), level + 1))


def count_instructions(instructions: Iterable[Instruction]) -> int:
    return sum(1 for _ in _walk(instructions))


def loop_depth(instructions: Iterable[Instruction]) -> int:
    depth = 0
    for node, level in _walk(instructions):
        if isinstance(node, Loop):
            depth = max(depth, level + 1)
    return depth


__all__ = [
    "Decrement",
    "Increment",
    "Input",
    "Instruction",
    "Loop",
    "MoveLeft",
    "MoveRight",
    "Output",
    "ParseError",
    "SYMBOLS",
    "UndelimitedJump",
    "count_instructions",
    "loop_depth",
    "parse",
]
