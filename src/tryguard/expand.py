"""Static expansion of a module's source text.

Shows what ``@guarded`` does without importing anything: every outermost
guarded function is expanded in place, ``guarded`` decorators are removed and
the two runtime names the expansion needs are imported at the top of the
module. The result runs without tryguard's decorator.
"""

from __future__ import annotations

import ast

from loguru import logger

from .directives import Directive
from .expansion.resolver import DirectiveResolver, ImportResolver
from .expansion.transformer import ABSENT_NAME, NORMALIZE_NAME, DirectiveExpander, FunctionNode
from .guard import strip_guard_decorator
from .models.expansion import ExpansionReport, FunctionExpansion


class _GuardedFinder(ast.NodeVisitor):
    """Collects outermost guarded defs with their qualified names."""

    def __init__(self, resolver: DirectiveResolver):
        self.resolver = resolver
        self.found: list[tuple[FunctionNode, str]] = []
        self._path: list[str] = []
        self._inside_guarded = False

    def _is_guarded(self, node: FunctionNode) -> bool:
        for decorator in node.decorator_list:
            target = decorator.func if isinstance(decorator, ast.Call) else decorator
            if self.resolver.resolve(target) is Directive.GUARDED:
                return True
        return False

    def _visit_function(self, node: FunctionNode) -> None:
        qualname = ".".join([*self._path, node.name])
        outer = self._inside_guarded
        if self._is_guarded(node) and not outer:
            self.found.append((node, qualname))
            self._inside_guarded = True
        self._path.extend([node.name, "<locals>"])
        self.generic_visit(node)
        del self._path[-2:]
        self._inside_guarded = outer

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._path.append(node.name)
        self.generic_visit(node)
        self._path.pop()


def _drop_nested_guards(node: FunctionNode, resolver: DirectiveResolver) -> None:
    for child in ast.walk(node):
        if child is node or not isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        child.decorator_list = [
            d
            for d in child.decorator_list
            if resolver.resolve(d.func if isinstance(d, ast.Call) else d) is not Directive.GUARDED
        ]


def _strip_innermost_guard(node: FunctionNode, resolver: DirectiveResolver, filename: str) -> None:
    outer = node.decorator_list[:-1]
    strip_guard_decorator(node, resolver, filename)
    node.decorator_list = outer


def _runtime_import_index(tree: ast.Module) -> int:
    body = tree.body
    index = 1 if body and ast.get_docstring(tree, clean=False) is not None else 0
    while index < len(body) and isinstance(body[index], ast.ImportFrom) and body[index].module == "__future__":
        index += 1
    return index


def expand_source(source: str, filename: str = "<string>") -> ExpansionReport:
    """Expand every ``@guarded`` function in ``source``.

    Raises ``SyntaxError`` for unparsable source and ``GuardDefinitionError``
    for directive misuse.
    """
    tree = ast.parse(source, filename=filename)
    resolver = ImportResolver(tree)
    finder = _GuardedFinder(resolver)
    finder.visit(tree)

    functions: list[FunctionExpansion] = []
    for node, qualname in finder.found:
        _strip_innermost_guard(node, resolver, filename)
        _drop_nested_guards(node, resolver)
        expander = DirectiveExpander(resolver, filename=filename)
        expander.expand_function(node)
        summary = expander.summary(node, qualname)
        logger.debug(f"Expanded {qualname} ({filename}:{summary.lineno}): {summary.directives.model_dump()}")
        functions.append(summary)

    if functions:
        runtime_import = ast.ImportFrom(
            module="tryguard.option",
            names=[
                ast.alias(name="normalize", asname=NORMALIZE_NAME),
                ast.alias(name="Absent", asname=ABSENT_NAME),
            ],
            level=0,
        )
        tree.body.insert(_runtime_import_index(tree), runtime_import)
    ast.fix_missing_locations(tree)

    return ExpansionReport(filename=filename, functions=functions, source=ast.unparse(tree))

