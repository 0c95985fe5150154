import pytest

from tryguard import (
    GuardDefinitionError,
    guarded,
    labeled,
    try_break,
    try_continue,
    try_return,
)


def passthrough(func):
    return func


def test_continue_outside_loop_is_rejected():
    with pytest.raises(GuardDefinitionError, match="outside of a loop"):

        @guarded
        def broken(value):
            return try_continue(value)


def test_break_in_for_iterable_is_outside_that_loop():
    with pytest.raises(GuardDefinitionError, match="outside of a loop"):

        @guarded
        def broken(values):
            for value in try_break(values):
                pass


def test_unknown_label_is_rejected():
    with pytest.raises(GuardDefinitionError, match="unknown loop label 'nope'"):

        @guarded
        def broken(values):
            for value in labeled("outer", values):
                try_break(value, "nope")


def test_label_must_be_a_string_literal():
    label = "outer"
    with pytest.raises(GuardDefinitionError, match="string literal label"):

        @guarded
        def broken(values):
            for value in labeled("outer", values):
                try_continue(value, label)


def test_labeled_needs_a_literal_label():
    name = "outer"
    with pytest.raises(GuardDefinitionError, match="string literal label"):

        @guarded
        def broken(values):
            for value in labeled(name, values):
                try_continue(value)


def test_duplicate_enclosing_label_is_rejected():
    with pytest.raises(GuardDefinitionError, match="shadows"):

        @guarded
        def broken(rows):
            for row in labeled("outer", rows):
                for cell in labeled("outer", row):
                    try_continue(cell, "outer")


def test_labeled_outside_loop_header_is_rejected():
    with pytest.raises(GuardDefinitionError, match="labeled\\(\\) may only wrap"):

        @guarded
        def broken(values):
            items = labeled("outer", values)
            return try_return(items)


@pytest.mark.parametrize(
    "where",
    ["a lambda", "a comprehension", "a conditional expression branch", "a short-circuited operand"],
)
def test_conditionally_evaluated_positions_are_rejected(where):
    with pytest.raises(GuardDefinitionError, match=where):
        if where == "a lambda":

            @guarded
            def broken(value):
                return lambda: try_return(value)

        elif where == "a comprehension":

            @guarded
            def broken(values):
                return [try_return(v) for v in values]

        elif where == "a conditional expression branch":

            @guarded
            def broken(value, flag):
                return try_return(value) if flag else None

        else:

            @guarded
            def broken(value, flag):
                return flag and try_return(value)


def test_while_condition_is_rejected():
    with pytest.raises(GuardDefinitionError, match="while condition"):

        @guarded
        def broken(value):
            while try_break(value):
                pass


def test_except_clause_type_is_rejected():
    with pytest.raises(GuardDefinitionError, match="except clause"):

        @guarded
        def broken(value):
            try:
                pass
            except try_return(value):
                pass


def test_directive_in_fallback_is_rejected():
    with pytest.raises(GuardDefinitionError, match="fallback"):

        @guarded
        def broken(value, other):
            return try_return(value, try_return(other))


def test_class_body_is_rejected():
    with pytest.raises(GuardDefinitionError, match="class body"):

        @guarded
        def broken(value):
            class Config:
                setting = try_return(value)

            return Config


def test_methods_of_nested_classes_are_expanded():
    @guarded
    def build(value):
        class Config:
            def setting(self):
                return try_return(value, "default")

        return Config().setting()

    assert build(None) == "default"
    assert build("custom") == "custom"


def test_too_many_arguments_are_rejected():
    with pytest.raises(GuardDefinitionError, match="at most 2 arguments"):

        @guarded
        def broken(value):
            return try_return(value, 1, 2)


def test_unknown_keyword_is_rejected():
    with pytest.raises(GuardDefinitionError, match="unexpected keyword argument 'fallback'"):

        @guarded
        def broken(values):
            for value in values:
                try_continue(value, fallback=1)


def test_starred_arguments_are_rejected():
    with pytest.raises(GuardDefinitionError, match=r"\* or \*\*"):

        @guarded
        def broken(args):
            return try_return(*args)


def test_guarded_must_be_innermost_decorator():
    with pytest.raises(GuardDefinitionError, match="innermost"):

        @guarded
        @passthrough
        def broken(value):
            return try_return(value)


def test_guarded_rejects_non_functions():
    with pytest.raises(GuardDefinitionError, match="plain function"):

        @guarded
        @staticmethod
        def broken(value):
            return try_return(value)


def test_guarded_rejects_lambdas():
    with pytest.raises(GuardDefinitionError, match="lambda"):
        guarded(lambda value: value)


def test_source_must_be_available():
    namespace = {"guarded": guarded, "try_return": try_return}
    with pytest.raises(GuardDefinitionError, match="cannot read the source"):
        exec("@guarded\ndef broken(value):\n    return try_return(value)\n", namespace)


def test_error_reports_file_and_line():
    with pytest.raises(GuardDefinitionError) as exc_info:

        @guarded
        def broken(value):
            return try_continue(value)

    error = exc_info.value
    assert error.filename.endswith("test_definition_errors.py")
    assert error.lineno is not None
    assert f"{error.filename}:{error.lineno}:" in str(error)


def test_assert_test_is_rejected():
    with pytest.raises(GuardDefinitionError, match="an assert test"):

        @guarded
        def broken(value):
            assert try_return(value) > 0


def test_later_operands_of_a_chained_comparison_are_rejected():
    with pytest.raises(GuardDefinitionError, match="a chained comparison"):

        @guarded
        def broken(low, value, high):
            return low < value < try_return(high)


def test_assignment_target_is_rejected():
    with pytest.raises(GuardDefinitionError, match="an assignment target"):

        @guarded
        def broken(table, key):
            table[try_return(key)] = 1


def test_variable_annotation_is_rejected():
    with pytest.raises(GuardDefinitionError, match="a variable annotation"):

        @guarded
        def broken(value):
            payload: try_return(value) = 1
            return payload
