"""Decide which call nodes are tryguard directives.

Two strategies, same interface:

- ``NamespaceResolver`` looks names up in a live function's globals and
  closure, so aliases and module attributes resolve to the real objects.
- ``ImportResolver`` works on source text alone by following the module's own
  ``import`` statements. Used for static expansion, where nothing is imported.

Either is wrapped in ``LocalScopeResolver`` per function, so a parameter or
local variable named like a directive stays an ordinary name.
"""

from __future__ import annotations

import ast
from types import ModuleType
from typing import Any, Iterable, Mapping, Optional, Protocol, Union

from ..directives import DIRECTIVE_ATTR, Directive

PACKAGE = "tryguard"

_KINDS = {kind.value: kind for kind in Directive}
_MISSING = object()


class DirectiveResolver(Protocol):
    def resolve(self, node: ast.expr) -> Optional[Directive]: ...


class NamespaceResolver:
    """Resolve ``Name`` / ``module.attr`` chains against live objects."""

    def __init__(self, namespace: Mapping[str, Any]):
        self._namespace = namespace

    def resolve(self, node: ast.expr) -> Optional[Directive]:
        target = self._lookup(node)
        if target is _MISSING:
            return None
        kind = getattr(target, DIRECTIVE_ATTR, None)
        return kind if isinstance(kind, Directive) else None

    def _lookup(self, node: ast.expr) -> Any:
        if isinstance(node, ast.Name):
            return self._namespace.get(node.id, _MISSING)
        if isinstance(node, ast.Attribute):
            base = self._lookup(node.value)
            # Only module attributes are followed; arbitrary getattr could run user code.
            if isinstance(base, ModuleType):
                return vars(base).get(node.attr, _MISSING)
        return _MISSING


def _is_package_module(name: str) -> bool:
    return name == PACKAGE or name.startswith(PACKAGE + ".")


class ImportResolver:
    """Resolve names bound by ``import tryguard`` / ``from tryguard import ...``."""

    def __init__(self, tree: ast.AST):
        self._names: dict[str, Directive] = {}
        self._modules: set[str] = set()

        for node in ast.walk(tree):
            if isinstance(node, ast.ImportFrom):
                if node.level or not node.module or not _is_package_module(node.module):
                    continue
                for alias in node.names:
                    bound = alias.asname or alias.name
                    kind = _KINDS.get(alias.name)
                    if kind is not None:
                        self._names[bound] = kind
                    else:
                        # ``from tryguard import directives``
                        self._modules.add(bound)
            elif isinstance(node, ast.Import):
                for alias in node.names:
                    if not _is_package_module(alias.name):
                        continue
                    if alias.asname:
                        self._modules.add(alias.asname)
                    else:
                        self._modules.add(alias.name.split(".")[0])

    def resolve(self, node: ast.expr) -> Optional[Directive]:
        if isinstance(node, ast.Name):
            return self._names.get(node.id)
        if isinstance(node, ast.Attribute):
            base = node.value
            while isinstance(base, ast.Attribute):
                base = base.value
            if isinstance(base, ast.Name) and base.id in self._modules:
                return _KINDS.get(node.attr)
        return None


class LocalScopeResolver:
    """Treat names a function binds itself as ordinary names, never directives."""

    def __init__(self, base: DirectiveResolver, local_names: Iterable[str]):
        self._base = base
        self._locals = frozenset(local_names)

    def resolve(self, node: ast.expr) -> Optional[Directive]:
        root = node
        while isinstance(root, ast.Attribute):
            root = root.value
        if isinstance(root, ast.Name) and root.id in self._locals:
            return None
        return self._base.resolve(node)


_NESTED_SCOPES = (ast.Lambda, ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)


def _binds_package(node: Union[ast.Import, ast.ImportFrom]) -> bool:
    if isinstance(node, ast.ImportFrom):
        return not node.level and bool(node.module) and _is_package_module(node.module)
    return all(_is_package_module(alias.name) for alias in node.names)


def local_bindings(func: Union[ast.FunctionDef, ast.AsyncFunctionDef]) -> set[str]:
    """Names local to ``func``: parameters plus everything its own body binds.

    Nested functions, classes, lambdas and comprehensions have scopes of their
    own; only their names (and what is evaluated in ``func``, such as
    decorators and defaults) count. ``global`` / ``nonlocal`` names are not local.
    Imports from tryguard itself do not shadow anything.
    """
    args = func.args
    bound = {arg.arg for arg in (*args.posonlyargs, *args.args, *args.kwonlyargs)}
    bound.update(arg.arg for arg in (args.vararg, args.kwarg) if arg is not None)
    declared: set[str] = set()

    pending: list[ast.AST] = list(func.body)
    while pending:
        node = pending.pop()
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            bound.add(node.name)
            pending.extend(node.decorator_list)
            if isinstance(node, ast.ClassDef):
                pending.extend(node.bases)
                pending.extend(node.keywords)
            else:
                pending.extend(node.args.defaults)
                pending.extend(d for d in node.args.kw_defaults if d is not None)
            continue
        if isinstance(node, _NESTED_SCOPES):
            continue
        if isinstance(node, (ast.Global, ast.Nonlocal)):
            declared.update(node.names)
        elif isinstance(node, ast.Name) and not isinstance(node.ctx, ast.Load):
            bound.add(node.id)
        elif isinstance(node, (ast.Import, ast.ImportFrom)):
            if not _binds_package(node):
                bound.update(
                    alias.asname or alias.name.split(".")[0] for alias in node.names if alias.name != "*"
                )
        elif isinstance(node, ast.ExceptHandler) and node.name:
            bound.add(node.name)
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
            bound.add(node.name)
        elif isinstance(node, ast.MatchMapping) and node.rest:
            bound.add(node.rest)
        pending.extend(ast.iter_child_nodes(node))
    return bound - declared
