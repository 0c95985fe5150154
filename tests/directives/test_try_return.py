import asyncio

import pytest

import tryguard as tg
from tryguard import Err, GuardUsageError, Ok, Present, expansion_of, guarded, try_return


@guarded
def with_fallback(value):
    result = try_return(value, 1234)
    return result


@guarded
def without_fallback(value, log):
    payload = try_return(value)
    log.append(payload)


def test_present_value_yields_payload():
    assert with_fallback(10) == 10


def test_absent_value_returns_fallback():
    assert with_fallback(None) == 1234


def test_no_fallback_returns_none_and_skips_rest():
    log = []
    assert without_fallback(None, log) is None
    assert log == []


def test_no_fallback_present_runs_rest_of_function():
    log = []
    without_fallback(10, log)
    assert log == [10]


def test_result_values_behave_like_native_values():
    assert with_fallback(Ok(10)) == 10
    assert with_fallback(Err("lookup failed")) == 1234
    assert with_fallback(Present(7)) == 7


def test_fallback_is_not_evaluated_on_present_path():
    @guarded
    def expensive(value):
        return try_return(value, pytest.fail("fallback evaluated"))

    assert expensive(10) == 10


def test_fallback_keyword_argument():
    @guarded
    def lookup(table, key):
        return try_return(table.get(key), fallback="missing")

    assert lookup({"a": 1}, "a") == 1
    assert lookup({"a": 1}, "b") == "missing"


def test_nested_directives_unwrap_innermost_first():
    @guarded
    def unwrap_twice(value):
        return try_return(try_return(value, "first check"), "second check")

    assert unwrap_twice(Present(Present(3))) == 3
    assert unwrap_twice(None) == "first check"
    assert unwrap_twice(Present(None)) == "second check"


def test_directive_in_if_condition():
    @guarded
    def is_admin(user):
        if try_return(user.get("role"), False) == "admin":
            return True
        return False

    assert is_admin({"role": "admin"}) is True
    assert is_admin({"role": "guest"}) is False
    assert is_admin({}) is False


def test_module_attribute_form_is_expanded():
    @tg.guarded
    def first(items):
        return tg.try_return(items[0] if items else None, -1)

    assert first([5]) == 5
    assert first([]) == -1


def test_closure_variables_are_shared_with_enclosing_scope():
    calls = []
    default = "unset"

    @guarded
    def record(value):
        nonlocal default
        calls.append(try_return(value, default))
        default = "after"

    record(None)
    record(1)
    assert calls == [1]
    assert default == "after"


def test_nested_def_returns_from_itself():
    @guarded
    def outer(values):
        def first(value):
            return try_return(value, "inner fallback")

        return [first(v) for v in values]

    assert outer([1, None]) == [1, "inner fallback"]


def test_generator_stops_on_absence():
    @guarded
    def leading(items):
        for item in items:
            yield try_return(item)

    assert list(leading([1, 2, None, 4])) == [1, 2]


def test_async_function_returns_fallback():
    @guarded
    async def fetch(value):
        payload = try_return(value, "missing")
        await asyncio.sleep(0)
        return payload * 2

    assert asyncio.run(fetch(None)) == "missing"
    assert asyncio.run(fetch(21)) == 42


class Account:
    def __init__(self, balances):
        self.__balances = balances

    @guarded
    def balance(self, name, *, default=0):
        """Balance for ``name``."""
        return try_return(self.__balances.get(name), default)


def test_method_keeps_private_name_mangling_and_kwdefaults():
    account = Account({"alice": 10})
    assert account.balance("alice") == 10
    assert account.balance("bob") == 0
    assert account.balance("bob", default=-1) == -1


def test_metadata_is_preserved():
    assert Account.balance.__name__ == "balance"
    assert Account.balance.__qualname__ == "Account.balance"
    assert Account.balance.__doc__ == "Balance for ``name``."
    assert with_fallback.__module__ == __name__


def test_expansion_summary_is_attached():
    summary = expansion_of(with_fallback)
    assert summary is not None
    assert summary.qualname == "with_fallback"
    assert summary.directives.try_return == 1
    assert summary.directives.total == 1


def test_guarding_twice_is_a_no_op():
    assert guarded(with_fallback) is with_fallback


def test_function_without_directives_is_returned_unchanged():
    def plain(value):
        return value

    assert guarded(plain) is plain
    assert expansion_of(plain) is None


def test_decorator_with_options():
    @guarded(log_expansion=True)
    def lookup(value):
        return try_return(value, 0)

    assert lookup(None) == 0


def test_operands_left_of_a_directive_are_evaluated_first():
    @guarded
    def pair(it):
        return (next(it), try_return(next(it)))

    assert pair(iter([1, 2])) == (1, 2)


def test_side_effects_left_of_a_directive_run_before_it_returns():
    log = []

    @guarded
    def tagged(value):
        return (log.append("left"), try_return(value, "fallback"))

    assert tagged(None) == "fallback"
    assert log == ["left"]


def test_call_arguments_keep_their_order():
    @guarded
    def build(it):
        return dict(first=next(it), second=try_return(next(it)), third=next(it))

    assert build(iter([1, 2, 3])) == {"first": 1, "second": 2, "third": 3}
    assert build(iter([1, None, 3])) is None


def test_dict_display_and_fstring_keep_their_order():
    @guarded
    def render(it):
        table = {next(it): try_return(next(it))}
        return table, f"{next(it)}-{try_return(next(it))}"

    assert render(iter(["k", "v", "a", "b"])) == ({"k": "v"}, "a-b")


def test_augmented_assignment_target_is_evaluated_before_the_directive():
    @guarded
    def bump(counts, it):
        counts[next(it)] += try_return(next(it), "missing")
        return counts

    assert bump({"a": 1}, iter(["a", 5])) == {"a": 6}
    assert bump({"a": 1}, iter(["a", None])) == "missing"


def test_parameter_named_like_a_directive_is_an_ordinary_call():
    @guarded
    def call_through(try_return, value):
        return try_return(value)

    assert call_through(lambda v: ("called", v), None) == ("called", None)


def test_local_named_like_a_directive_does_not_hide_the_real_one():
    @guarded
    def mixed(value):
        try_return = lambda payload: ("local", payload)  # noqa: E731
        return try_return(tg.try_return(value, "fallback"))

    assert mixed(None) == "fallback"
    assert mixed(1) == ("local", 1)
    assert expansion_of(mixed).directives.total == 1


def test_unguarded_call_fails_fast():
    with pytest.raises(GuardUsageError, match="@guarded"):
        try_return(None, 1)
