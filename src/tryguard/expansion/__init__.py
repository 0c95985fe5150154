"""Source-level expansion of directive calls."""

from .resolver import DirectiveResolver, ImportResolver, LocalScopeResolver, NamespaceResolver, local_bindings
from .transformer import ABSENT_NAME, NORMALIZE_NAME, DirectiveExpander

__all__ = [
    "ABSENT_NAME",
    "NORMALIZE_NAME",
    "DirectiveExpander",
    "DirectiveResolver",
    "ImportResolver",
    "LocalScopeResolver",
    "NamespaceResolver",
    "local_bindings",
]
