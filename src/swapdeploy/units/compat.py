"""
Swap-compatibility checkers.

Deciding whether a modified unit can be redefined in a running process is a
collaborator concern; the orchestrator only asks "is this pair swappable?".
Two implementations are provided:

    - AlwaysCompatible: trusts every modification (the remote VM will reject
      what it cannot apply)
    - PythonStructureChecker: rejects structural changes of Python units
"""

import ast
from typing import Optional, Protocol

from swapdeploy.units.models import CodeUnit
from swapdeploy.units.splitter import MODULE_UNIT


class CompatibilityChecker(Protocol):
    """Decides whether new can replace old in a live process."""

    def is_swap_compatible(self, old: CodeUnit, new: CodeUnit) -> bool:
        ...


class AlwaysCompatible:
    def is_swap_compatible(self, old: CodeUnit, new: CodeUnit) -> bool:
        return True


class PythonStructureChecker:
    """
    Body-only changes are swappable; shape changes are not.

    Incompatible:
        - module-level statements changed (re-running them has side effects)
        - a class became a function or the other way round
        - class bases or the set of methods changed
        - either payload is missing or does not parse
    """

    def is_swap_compatible(self, old: CodeUnit, new: CodeUnit) -> bool:
        if old.name.endswith(f".{MODULE_UNIT}"):
            return False

        old_node = self._definition(old)
        new_node = self._definition(new)
        if old_node is None or new_node is None:
            return False

        if isinstance(old_node, ast.ClassDef) != isinstance(new_node, ast.ClassDef):
            return False

        if isinstance(old_node, ast.ClassDef):
            return (self._bases(old_node) == self._bases(new_node)
                    and self._methods(old_node) == self._methods(new_node))

        return True

    @staticmethod
    def _definition(unit: CodeUnit) -> Optional[ast.stmt]:
        if unit.payload is None:
            return None
        try:
            tree = ast.parse(unit.payload.decode('utf-8'))
        except (UnicodeDecodeError, SyntaxError, ValueError):
            return None
        for node in tree.body:
            if isinstance(node, (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
                return node
        return None

    @staticmethod
    def _bases(node: ast.ClassDef) -> list[str]:
        return [ast.dump(base) for base in node.bases]

    @staticmethod
    def _methods(node: ast.ClassDef) -> set[str]:
        return {
            item.name for item in node.body
            if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef))
        }
