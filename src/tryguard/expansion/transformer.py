"""
Directive expansion.

Rewrites the body of a guarded function so every directive call becomes
inline control flow in the caller's own scope::

    row = try_continue(parse(line))

becomes::

    _tryguard_value_0 = _tryguard_normalize(parse(line))
    if _tryguard_value_0 is _tryguard_absent:
        continue
    row = _tryguard_value_0.value

HOISTING
--------

Directive calls are hoisted in front of the statement that contains them,
innermost first. Operands that Python evaluates before a directive are spilled
into temporaries ahead of it, so evaluation order is unchanged::

    return (next(it), try_return(next(it)))

becomes::

    _tryguard_operand_0 = next(it)
    _tryguard_value_1 = _tryguard_normalize(next(it))
    if _tryguard_value_1 is _tryguard_absent:
        return
    return (_tryguard_operand_0, _tryguard_value_1.value)

Positions that are not evaluated exactly once before their statement runs
(lambdas, comprehensions, conditional branches, assignment targets, ``while``
conditions, ...) are rejected.

LABELS
------

A ``continue``/``break`` aimed at an outer loop cannot be written directly.
One flag per target loop carries it outwards:

- the directive sets the flag and breaks its innermost loop;
- every intervening loop is followed by ``if flag is not None: break``;
- the loop directly inside the target is preceded by ``flag = None`` and
  followed by the real ``continue`` / ``break``.
"""

from __future__ import annotations

import ast
import itertools
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Union

from ..directives import Directive
from ..errors import GuardDefinitionError
from ..models.expansion import DirectiveCounts, FunctionExpansion
from .resolver import DirectiveResolver, LocalScopeResolver, local_bindings

PREFIX = "_tryguard_"
NORMALIZE_NAME = PREFIX + "normalize"
ABSENT_NAME = PREFIX + "absent"

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]
LoopNode = Union[ast.For, ast.AsyncFor, ast.While]

_SECOND_PARAM = {
    Directive.RETURN: "fallback",
    Directive.CONTINUE: "label",
    Directive.BREAK: "label",
}


@dataclass(eq=False)
class _Loop:
    node: LoopNode
    label: Optional[str]
    flag: Optional[str] = None
    # flag -> jumps ("continue"/"break") dispatched right after this loop
    landings: dict[str, set[str]] = field(default_factory=dict)
    relays: list[str] = field(default_factory=list)


@dataclass
class _Scope:
    kind: str  # "function" or "class"
    loops: list[_Loop] = field(default_factory=list)

    def find(self, label: Optional[str]) -> Optional[_Loop]:
        if label is None:
            return self.loops[-1] if self.loops else None
        for loop in reversed(self.loops):
            if loop.label == label:
                return loop
        return None


def _name(identifier: str, store: bool = False) -> ast.Name:
    return ast.Name(id=identifier, ctx=ast.Store() if store else ast.Load())


def _assign(identifier: str, value: ast.expr) -> ast.Assign:
    return ast.Assign(targets=[_name(identifier, store=True)], value=value)


def _if(test: ast.expr, body: list[ast.stmt]) -> ast.If:
    return ast.If(test=test, body=body, orelse=[])


def _compare(identifier: str, op: ast.cmpop, value: ast.expr) -> ast.Compare:
    return ast.Compare(left=_name(identifier), ops=[op], comparators=[value])


def _jump(kind: Directive) -> ast.stmt:
    return ast.Continue() if kind is Directive.CONTINUE else ast.Break()


class DirectiveExpander:
    """Expands directives inside one function definition (and the defs nested in it)."""

    def __init__(self, resolver: DirectiveResolver, *, filename: str = "<unknown>"):
        self.resolver = resolver
        self.filename = filename
        self.counts: Counter[Directive] = Counter()
        self.labels: list[str] = []
        self._ids = itertools.count()

    @property
    def expanded(self) -> bool:
        return bool(sum(self.counts.values()) or self.labels)

    def expand_function(self, node: FunctionNode) -> FunctionNode:
        node.body = self._function_body(node)
        ast.fix_missing_locations(node)
        return node

    def summary(self, node: FunctionNode, qualname: str) -> FunctionExpansion:
        return FunctionExpansion(
            name=node.name,
            qualname=qualname,
            lineno=node.lineno,
            directives=DirectiveCounts(**{kind.value: n for kind, n in self.counts.items()}),
            labels=list(self.labels),
        )

    # -- diagnostics -------------------------------------------------------

    def error(self, message: str, node: Optional[ast.AST] = None) -> GuardDefinitionError:
        return GuardDefinitionError(
            message,
            filename=self.filename,
            lineno=getattr(node, "lineno", None),
        )

    def _recognised(self, node: ast.AST) -> Optional[ast.Call]:
        for child in ast.walk(node):
            if isinstance(child, ast.Call):
                kind = self.resolver.resolve(child.func)
                if kind is not None and kind is not Directive.GUARDED:
                    return child
        return None

    def reject(self, node: Optional[ast.AST], where: str) -> None:
        if node is None:
            return
        call = self._recognised(node)
        if call is not None:
            kind = self.resolver.resolve(call.func)
            raise self.error(f"{kind.value}() cannot be used in {where}", call)

    def _fresh(self, role: str) -> str:
        return f"{PREFIX}{role}_{next(self._ids)}"

    # -- statements --------------------------------------------------------

    def _block(self, body: list[ast.stmt], scope: _Scope) -> list[ast.stmt]:
        out: list[ast.stmt] = []
        for stmt in body:
            out.extend(self._statement(stmt, scope))
        return out

    def _function_body(self, node: FunctionNode) -> list[ast.stmt]:
        enclosing = self.resolver
        self.resolver = LocalScopeResolver(enclosing, local_bindings(node))
        try:
            return self._block(node.body, _Scope("function"))
        finally:
            self.resolver = enclosing

    def _statement(self, stmt: ast.stmt, scope: _Scope) -> list[ast.stmt]:
        prelude: list[ast.stmt] = []
        hoister = _ExpressionHoister(self, scope, prelude)
        hoist = hoister.visit

        emitted: list[ast.stmt]
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            stmt.decorator_list = [hoist(d) for d in stmt.decorator_list]
            stmt.args.defaults = [hoist(d) for d in stmt.args.defaults]
            stmt.args.kw_defaults = [d if d is None else hoist(d) for d in stmt.args.kw_defaults]
            stmt.body = self._function_body(stmt)
            emitted = [stmt]
        elif isinstance(stmt, ast.ClassDef):
            stmt.decorator_list = [hoist(d) for d in stmt.decorator_list]
            stmt.bases = [hoist(b) for b in stmt.bases]
            for keyword in stmt.keywords:
                keyword.value = hoist(keyword.value)
            stmt.body = self._block(stmt.body, _Scope("class"))
            emitted = [stmt]
        elif isinstance(stmt, (ast.For, ast.AsyncFor)):
            self.reject(stmt.target, "a for loop target")
            label, stmt.iter = self._loop_header(stmt.iter, scope)
            stmt.iter = hoist(stmt.iter)
            emitted = self._loop(stmt, label, scope)
        elif isinstance(stmt, ast.While):
            label, stmt.test = self._loop_header(stmt.test, scope)
            self.reject(stmt.test, "a while condition")
            emitted = self._loop(stmt, label, scope)
        elif isinstance(stmt, ast.If):
            stmt.test = hoist(stmt.test)
            stmt.body = self._block(stmt.body, scope)
            stmt.orelse = self._block(stmt.orelse, scope)
            emitted = [stmt]
        elif isinstance(stmt, (ast.With, ast.AsyncWith)):
            first, *rest = stmt.items
            first.context_expr = hoist(first.context_expr)
            for item in stmt.items:
                self.reject(item.optional_vars, "a with target")
            for item in rest:
                self.reject(item.context_expr, "a with item after the first")
            stmt.body = self._block(stmt.body, scope)
            emitted = [stmt]
        elif isinstance(stmt, (ast.Try, getattr(ast, "TryStar", ast.Try))):
            stmt.body = self._block(stmt.body, scope)
            for handler in stmt.handlers:
                self.reject(handler.type, "an except clause")
                handler.body = self._block(handler.body, scope)
            stmt.orelse = self._block(stmt.orelse, scope)
            stmt.finalbody = self._block(stmt.finalbody, scope)
            emitted = [stmt]
        elif isinstance(stmt, ast.Match):
            stmt.subject = hoist(stmt.subject)
            for case in stmt.cases:
                self.reject(case.guard, "a match guard")
                case.body = self._block(case.body, scope)
            emitted = [stmt]
        elif isinstance(stmt, ast.Assert):
            # Skipped entirely under -O.
            self.reject(stmt.test, "an assert test")
            self.reject(stmt.msg, "an assert message")
            emitted = [stmt]
        elif isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                self.reject(target, "an assignment target")
            stmt.value = hoist(stmt.value)
            emitted = [stmt]
        elif isinstance(stmt, ast.AnnAssign):
            self.reject(stmt.target, "an assignment target")
            self.reject(stmt.annotation, "a variable annotation")
            if stmt.value is not None:
                stmt.value = hoist(stmt.value)
            emitted = [stmt]
        elif isinstance(stmt, ast.AugAssign):
            self.reject(stmt.target, "an assignment target")
            if self._recognised(stmt.value) is not None:
                # The target's object and index are evaluated before the value.
                hoister.spill_target(stmt.target)
            stmt.value = hoist(stmt.value)
            emitted = [stmt]
        elif isinstance(stmt, ast.Delete):
            for target in stmt.targets:
                self.reject(target, "a del statement")
            emitted = [stmt]
        else:
            emitted = [hoist(stmt)]

        for generated in prelude:
            ast.copy_location(generated, stmt)
        return [*prelude, *emitted]

    def _loop_header(self, expr: ast.expr, scope: _Scope) -> tuple[Optional[str], ast.expr]:
        if not isinstance(expr, ast.Call) or self.resolver.resolve(expr.func) is not Directive.LABELED:
            return None, expr
        if len(expr.args) != 2 or expr.keywords or any(isinstance(a, ast.Starred) for a in expr.args):
            raise self.error("labeled() takes exactly two positional arguments: a label and the loop header", expr)
        label_node, header = expr.args
        if not isinstance(label_node, ast.Constant) or not isinstance(label_node.value, str):
            raise self.error("labeled() needs a string literal label", expr)
        label = label_node.value
        if scope.find(label) is not None:
            raise self.error(f"loop label {label!r} shadows an enclosing loop with the same label", expr)
        self.labels.append(label)
        return label, header

    def _loop(self, stmt: LoopNode, label: Optional[str], scope: _Scope) -> list[ast.stmt]:
        loop = _Loop(stmt, label)
        scope.loops.append(loop)
        try:
            stmt.body = self._block(stmt.body, scope)
        finally:
            scope.loops.pop()
        # A break/continue in the else clause belongs to the enclosing loop.
        stmt.orelse = self._block(stmt.orelse, scope)

        before: list[ast.stmt] = [_assign(flag, ast.Constant(value=None)) for flag in loop.landings]
        after: list[ast.stmt] = [
            _if(_compare(flag, ast.IsNot(), ast.Constant(value=None)), [ast.Break()])
            for flag in loop.relays
        ]
        for flag, jumps in loop.landings.items():
            for kind in (Directive.BREAK, Directive.CONTINUE):
                if kind.value in jumps:
                    after.append(_if(_compare(flag, ast.Eq(), ast.Constant(value=kind.value)), [_jump(kind)]))
        for generated in (*before, *after):
            ast.copy_location(generated, stmt)
        return [*before, stmt, *after]

    # -- directives --------------------------------------------------------

    def arguments(self, kind: Directive, call: ast.Call) -> tuple[ast.expr, Optional[ast.expr]]:
        params = ("value", _SECOND_PARAM[kind])
        if any(isinstance(a, ast.Starred) for a in call.args) or any(k.arg is None for k in call.keywords):
            raise self.error(f"{kind.value}() does not accept * or ** arguments", call)
        if len(call.args) > len(params):
            raise self.error(f"{kind.value}() takes at most {len(params)} arguments", call)
        bound: dict[str, ast.expr] = dict(zip(params, call.args))
        for keyword in call.keywords:
            if keyword.arg not in params:
                raise self.error(f"{kind.value}() got an unexpected keyword argument {keyword.arg!r}", call)
            if keyword.arg in bound:
                raise self.error(f"{kind.value}() got multiple values for argument {keyword.arg!r}", call)
            bound[keyword.arg] = keyword.value
        if "value" not in bound:
            raise self.error(f"{kind.value}() missing required argument 'value'", call)
        return bound["value"], bound.get(params[1])

    def divert(
        self,
        kind: Directive,
        value: ast.expr,
        extra: Optional[ast.expr],
        call: ast.Call,
        scope: _Scope,
        prelude: list[ast.stmt],
    ) -> ast.expr:
        if scope.kind != "function":
            raise self.error(f"{kind.value}() cannot be used directly in a class body", call)

        if kind is Directive.RETURN:
            self.reject(extra, "a try_return() fallback")
            diversion: list[ast.stmt] = [ast.Return(value=extra)]
        else:
            diversion = self._loop_diversion(kind, extra, call, scope)

        temp = self._fresh("value")
        prelude.append(_assign(temp, ast.Call(func=_name(NORMALIZE_NAME), args=[value], keywords=[])))
        prelude.append(_if(_compare(temp, ast.Is(), _name(ABSENT_NAME)), diversion))
        self.counts[kind] += 1
        return ast.copy_location(ast.Attribute(value=_name(temp), attr="value", ctx=ast.Load()), call)

    def _loop_diversion(
        self,
        kind: Directive,
        label_node: Optional[ast.expr],
        call: ast.Call,
        scope: _Scope,
    ) -> list[ast.stmt]:
        label: Optional[str] = None
        if label_node is not None:
            if isinstance(label_node, ast.Constant) and label_node.value is None:
                label = None
            elif isinstance(label_node, ast.Constant) and isinstance(label_node.value, str):
                label = label_node.value
            else:
                raise self.error(f"{kind.value}() needs a string literal label", call)

        if not scope.loops:
            raise self.error(f"{kind.value}() used outside of a loop", call)
        target = scope.find(label)
        if target is None:
            raise self.error(f"{kind.value}() names unknown loop label {label!r}", call)
        if target is scope.loops[-1]:
            return [_jump(kind)]

        index = scope.loops.index(target)
        if target.flag is None:
            target.flag = self._fresh("flag")
        flag = target.flag
        scope.loops[index + 1].landings.setdefault(flag, set()).add(kind.value)
        for inner in scope.loops[index + 2:]:
            if flag not in inner.relays:
                inner.relays.append(flag)
        return [_assign(flag, ast.Constant(value=kind.value)), ast.Break()]


_Slot = tuple[ast.AST, str, Optional[int]]


def _evaluation_slots(node: ast.AST) -> list[_Slot]:
    """The expression children of ``node``, in the order Python evaluates them."""
    slots: list[_Slot] = []
    if isinstance(node, ast.Dict):
        for index, key in enumerate(node.keys):
            if key is not None:
                slots.append((node, "keys", index))
            slots.append((node, "values", index))
        return slots
    for name, value in ast.iter_fields(node):
        if isinstance(value, ast.expr):
            slots.append((node, name, None))
        elif isinstance(value, list):
            for index, item in enumerate(value):
                if isinstance(item, ast.expr):
                    slots.append((node, name, index))
                elif isinstance(item, ast.keyword):
                    slots.append((item, "value", None))
    return slots


def _get(slot: _Slot) -> ast.expr:
    holder, name, index = slot
    value = getattr(holder, name)
    return value if index is None else value[index]


def _set(slot: _Slot, value: ast.expr) -> None:
    holder, name, index = slot
    if index is None:
        setattr(holder, name, value)
    else:
        getattr(holder, name)[index] = value


def _is_temporary(node: ast.expr) -> bool:
    if isinstance(node, ast.Attribute):
        node = node.value
    return isinstance(node, ast.Name) and node.id.startswith(PREFIX)


class _ExpressionHoister(ast.NodeTransformer):
    """Replaces directive calls in one statement's own expressions."""

    def __init__(self, expander: DirectiveExpander, scope: _Scope, prelude: list[ast.stmt]):
        self.expander = expander
        self.scope = scope
        self.prelude = prelude

    def generic_visit(self, node: ast.AST) -> ast.AST:
        slots = _evaluation_slots(node)
        last = -1
        for position, slot in enumerate(slots):
            if self.expander._recognised(_get(slot)) is not None:
                last = position
        for position, slot in enumerate(slots):
            value = self.visit(_get(slot))
            if position < last:
                value = self.spill(value)
            _set(slot, value)
        return node

    def spill(self, node: ast.expr) -> ast.expr:
        """Evaluate ``node`` now, into a temporary, ahead of a later directive."""
        if isinstance(node, (ast.Starred, ast.FormattedValue)):
            node.value = self.spill(node.value)
            return node
        if isinstance(node, ast.Slice):
            for name in ("lower", "upper", "step"):
                part = getattr(node, name)
                if part is not None:
                    setattr(node, name, self.spill(part))
            return node
        if isinstance(node, ast.Constant) or _is_temporary(node):
            return node
        if not isinstance(getattr(node, "ctx", ast.Load()), ast.Load):
            return node
        temp = self.expander._fresh("operand")
        self.prelude.append(_assign(temp, node))
        return ast.copy_location(_name(temp), node)

    def spill_target(self, target: ast.expr) -> None:
        if isinstance(target, (ast.Attribute, ast.Subscript)):
            target.value = self.spill(target.value)
        if isinstance(target, ast.Subscript):
            target.slice = self.spill(target.slice)

    def visit_Call(self, node: ast.Call) -> ast.expr:
        kind = self.expander.resolver.resolve(node.func)
        if kind is Directive.LABELED:
            raise self.expander.error(
                "labeled() may only wrap the iterable of a for loop or the condition of a while loop",
                node,
            )
        if kind is None or not kind.diverts:
            self.generic_visit(node)
            return node
        value, extra = self.expander.arguments(kind, node)
        value = self.visit(value)
        return self.expander.divert(kind, value, extra, node, self.scope, self.prelude)

    def _opaque(self, node: ast.expr, where: str) -> ast.expr:
        self.expander.reject(node, where)
        return node

    def visit_Lambda(self, node: ast.Lambda) -> ast.expr:
        return self._opaque(node, "a lambda")

    def visit_ListComp(self, node: ast.ListComp) -> ast.expr:
        return self._opaque(node, "a comprehension")

    visit_SetComp = visit_ListComp
    visit_DictComp = visit_ListComp
    visit_GeneratorExp = visit_ListComp

    def visit_IfExp(self, node: ast.IfExp) -> ast.expr:
        node.test = self.visit(node.test)
        self.expander.reject(node.body, "a conditional expression branch")
        self.expander.reject(node.orelse, "a conditional expression branch")
        return node

    def visit_BoolOp(self, node: ast.BoolOp) -> ast.expr:
        first, *rest = node.values
        node.values[0] = self.visit(first)
        for value in rest:
            self.expander.reject(value, "a short-circuited operand")
        return node

    def visit_Compare(self, node: ast.Compare) -> ast.expr:
        for comparator in node.comparators[1:]:
            self.expander.reject(comparator, "a chained comparison")
        return self.generic_visit(node)
