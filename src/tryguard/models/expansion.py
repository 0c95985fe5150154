"""
Public models describing what the expander did to a function or module.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class DirectiveCounts(BaseModel):
    """
    Number of directive call sites expanded, per directive.
    """

    try_return: int = Field(default=0, description="Call sites of try_return().")
    try_continue: int = Field(default=0, description="Call sites of try_continue().")
    try_break: int = Field(default=0, description="Call sites of try_break().")

    @property
    def total(self) -> int:
        return self.try_return + self.try_continue + self.try_break


class FunctionExpansion(BaseModel):
    """
    Expansion summary for a single guarded function.
    """

    name: str = Field(description="Function name as written in the def statement.")
    qualname: str = Field(description="Qualified name (for example Parser.parse_row).")
    lineno: int = Field(description="Line of the def statement in the original file.")
    directives: DirectiveCounts = Field(
        default_factory=DirectiveCounts,
        description="Directive call sites rewritten inside the function body.",
    )
    labels: list[str] = Field(
        default_factory=list,
        description="Loop labels declared with labeled(), in source order.",
    )


class ExpansionReport(BaseModel):
    """
    Result of statically expanding a module's source text.
    """

    filename: str = Field(description="File name used for diagnostics.")
    functions: list[FunctionExpansion] = Field(
        default_factory=list,
        description="Guarded functions found at any nesting depth, outermost only.",
    )
    source: str = Field(description="Expanded module source.")
