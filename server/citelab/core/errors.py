from __future__ import annotations


class NotFoundError(LookupError):
    """A referenced project, document, citation or article does not exist."""

    def __init__(self, kind: str, ident: str) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class NumberingInvariantError(RuntimeError):
    """A citation mutation would leave overlapping inline or sub numbers."""
