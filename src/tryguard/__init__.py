"""
Public API for the tryguard package.
"""

from .directives import labeled, try_break, try_continue, try_return
from .errors import GuardDefinitionError, GuardError, GuardUsageError
from .expand import expand_source
from .guard import expansion_of, guarded
from .logging import configure_logging
from .models import DirectiveCounts, ExpansionReport, FunctionExpansion
from .option import (
    Absent,
    AbsentType,
    Err,
    Ok,
    Option,
    Present,
    Result,
    TryAsOption,
    normalize,
)

__all__ = [
    "guarded",
    "try_return",
    "try_continue",
    "try_break",
    "labeled",
    "Present",
    "Absent",
    "AbsentType",
    "Option",
    "Ok",
    "Err",
    "Result",
    "TryAsOption",
    "normalize",
    "expand_source",
    "expansion_of",
    "configure_logging",
    "GuardError",
    "GuardDefinitionError",
    "GuardUsageError",
    "DirectiveCounts",
    "ExpansionReport",
    "FunctionExpansion",
]
