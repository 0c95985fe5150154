from .expansion import (
    DirectiveCounts,
    ExpansionReport,
    FunctionExpansion,
)

__all__ = [
    "DirectiveCounts",
    "ExpansionReport",
    "FunctionExpansion",
]
