"""
The ``@guarded`` decorator.

A plain function cannot return from its caller or continue the caller's loop,
so directives are expanded at definition time instead: the decorated
function's source is parsed, every directive call is inlined by
``DirectiveExpander``, and the result is compiled into a new function that
shares the original's globals, closure cells, defaults and metadata.

The new code is compiled inside a factory whose parameters are the original
free variables, so closure references stay closure references::

    def _tryguard_factory(<original freevars>, _tryguard_normalize, _tryguard_absent):
        def func(...):
            ...expanded body...

Only the inner code object is kept; the factory never runs.
"""

from __future__ import annotations

import __future__
import ast
import builtins
import functools
import inspect
import operator
import sys
import textwrap
import types
from collections import ChainMap
from typing import Any, Callable, Optional, TypeVar, Union, overload

from loguru import logger

from .directives import DIRECTIVE_ATTR, Directive
from .errors import GuardDefinitionError
from .expansion.resolver import DirectiveResolver, NamespaceResolver
from .expansion.transformer import ABSENT_NAME, NORMALIZE_NAME, PREFIX, DirectiveExpander, FunctionNode
from .models.expansion import FunctionExpansion
from .option import Absent, normalize

F = TypeVar("F", bound=Callable[..., Any])

EXPANSION_ATTR = "__tryguard_expansion__"
FACTORY_NAME = PREFIX + "factory"

# Compiler flags of the __future__ features that are still optional on this interpreter.
FUTURE_FLAGS = functools.reduce(
    operator.or_,
    (
        feature.compiler_flag
        for feature in (getattr(__future__, name) for name in __future__.all_feature_names)
        if feature.getMandatoryRelease() is None or feature.getMandatoryRelease() > sys.version_info
    ),
    0,
)


@overload
def guarded(func: F, /, *, log_expansion: bool = False) -> F: ...


@overload
def guarded(func: None = None, /, *, log_expansion: bool = False) -> Callable[[F], F]: ...


def guarded(func: Optional[F] = None, /, *, log_expansion: bool = False) -> Union[F, Callable[[F], F]]:
    """Expand ``try_return`` / ``try_continue`` / ``try_break`` inside ``func``.

    Must be the innermost decorator. Misuse raises ``GuardDefinitionError``
    here, before the function can run. With ``log_expansion=True`` the
    expanded source is logged at DEBUG level.
    """
    if func is None:
        return functools.partial(guarded, log_expansion=log_expansion)
    return _expand(func, log_expansion=log_expansion)


setattr(guarded, DIRECTIVE_ATTR, Directive.GUARDED)


def expansion_of(func: Callable[..., Any]) -> Optional[FunctionExpansion]:
    """Return the expansion summary attached by ``@guarded``, if any."""
    return getattr(func, EXPANSION_ATTR, None)


def strip_guard_decorator(node: FunctionNode, resolver: DirectiveResolver, filename: str) -> None:
    """Drop the decorators of ``node``, checking ``guarded`` was the innermost one."""
    if node.decorator_list:
        innermost = node.decorator_list[-1]
        target = innermost.func if isinstance(innermost, ast.Call) else innermost
        if resolver.resolve(target) is not Directive.GUARDED:
            raise GuardDefinitionError(
                f"@guarded must be the innermost decorator of {node.name}()",
                filename=filename,
                lineno=node.lineno,
            )
    node.decorator_list = []


def _expand(func: F, *, log_expansion: bool) -> F:
    if getattr(func, EXPANSION_ATTR, None) is not None:
        return func
    if not isinstance(func, types.FunctionType):
        raise GuardDefinitionError(
            f"@guarded expects a plain function, got {type(func).__name__}; "
            "it must be the innermost decorator"
        )
    if func.__name__ == "<lambda>":
        raise GuardDefinitionError("@guarded cannot expand a lambda")

    filename = func.__code__.co_filename
    node = _parse(func, filename)
    resolver = NamespaceResolver(_namespace(func))
    strip_guard_decorator(node, resolver, filename)

    expander = DirectiveExpander(resolver, filename=filename)
    expander.expand_function(node)
    if not expander.expanded:
        logger.debug(f"{func.__qualname__}: no directives to expand")
        return func

    rebuilt = _rebuild(func, node, filename)
    summary = expander.summary(node, func.__qualname__)
    setattr(rebuilt, EXPANSION_ATTR, summary)
    logger.debug(
        f"Expanded {summary.qualname} ({filename}:{summary.lineno}): "
        f"{summary.directives.model_dump()} labels={summary.labels}"
    )
    if log_expansion:
        logger.debug(f"Expanded source of {summary.qualname}:\n{ast.unparse(node)}")
    return rebuilt


def _parse(func: types.FunctionType, filename: str) -> FunctionNode:
    try:
        lines, start = inspect.getsourcelines(func)
    except (OSError, TypeError) as exc:
        raise GuardDefinitionError(
            f"cannot read the source of {func.__qualname__}()", filename=filename
        ) from exc

    try:
        tree = ast.parse(textwrap.dedent("".join(lines)), filename=filename)
    except SyntaxError as exc:
        raise GuardDefinitionError(
            f"cannot parse the source of {func.__qualname__}(): {exc.msg}",
            filename=filename,
            lineno=start,
        ) from exc
    ast.increment_lineno(tree, start - 1)

    node = tree.body[0] if tree.body else None
    if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) or node.name != func.__name__:
        raise GuardDefinitionError(
            f"source of {func.__qualname__}() is not a def statement", filename=filename, lineno=start
        )
    return node


def _namespace(func: types.FunctionType) -> ChainMap:
    closure: dict[str, Any] = {}
    for name, cell in zip(func.__code__.co_freevars, func.__closure__ or ()):
        try:
            closure[name] = cell.cell_contents
        except ValueError:
            # Unbound cell: the enclosing function has not assigned it yet.
            continue
    return ChainMap(closure, func.__globals__, vars(builtins))


def _owner_class(func: types.FunctionType) -> Optional[str]:
    parts = func.__qualname__.split(".")
    if len(parts) >= 2 and parts[-2] != "<locals>":
        return parts[-2]
    return None


def _find_code(code: types.CodeType, name: str) -> Optional[types.CodeType]:
    pending = [code]
    while pending:
        nested = [c for c in pending.pop(0).co_consts if isinstance(c, types.CodeType)]
        for candidate in nested:
            if candidate.co_name == name:
                return candidate
        pending.extend(nested)
    return None


def _rebuild(func: types.FunctionType, node: FunctionNode, filename: str) -> Any:
    original = func.__code__
    params = list(dict.fromkeys([*original.co_freevars, NORMALIZE_NAME, ABSENT_NAME]))
    factory = ast.FunctionDef(
        name=FACTORY_NAME,
        args=ast.arguments(
            posonlyargs=[],
            args=[ast.arg(arg=name) for name in params],
            vararg=None,
            kwonlyargs=[],
            kw_defaults=[],
            kwarg=None,
            defaults=[],
        ),
        body=[node],
        decorator_list=[],
        returns=None,
        type_params=[],
    )
    body: list[ast.stmt] = [factory]
    owner = _owner_class(func)
    if owner is not None:
        # Compile inside a class of the same name so private names mangle the same way.
        body = [
            ast.ClassDef(
                name=owner,
                bases=[],
                keywords=[],
                body=body,
                decorator_list=[],
                type_params=[],
            )
        ]
    module = ast.fix_missing_locations(ast.Module(body=body, type_ignores=[]))

    try:
        compiled = compile(
            module,
            filename,
            "exec",
            flags=original.co_flags & FUTURE_FLAGS,
            dont_inherit=True,
        )
    except SyntaxError as exc:
        raise GuardDefinitionError(
            f"expanded {func.__qualname__}() does not compile: {exc.msg}",
            filename=filename,
            lineno=exc.lineno,
        ) from exc

    factory_code = _find_code(compiled, FACTORY_NAME)
    code = _find_code(factory_code, func.__name__) if factory_code is not None else None
    if code is None:
        raise GuardDefinitionError(f"expanded {func.__qualname__}() produced no code object", filename=filename)

    cells = dict(zip(original.co_freevars, func.__closure__ or ()))
    cells[NORMALIZE_NAME] = types.CellType(normalize)
    cells[ABSENT_NAME] = types.CellType(Absent)

    rebuilt = types.FunctionType(
        code,
        func.__globals__,
        func.__name__,
        func.__defaults__,
        tuple(cells[name] for name in code.co_freevars),
    )
    rebuilt.__kwdefaults__ = func.__kwdefaults__
    functools.update_wrapper(rebuilt, func)
    return rebuilt
