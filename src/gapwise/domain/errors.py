"""Exception hierarchy shared by every layer."""


class GapwiseError(Exception):
    """Base class for all gapwise errors."""


class ValidationError(GapwiseError):
    """Malformed input, rejected before any state is touched."""


class NotFoundError(GapwiseError):
    """A referenced concept or item does not exist."""


class UnknownItemError(NotFoundError, ValidationError):
    """An attempt names an item id that is not in the catalog."""

    def __init__(self, item_id: str):
        super().__init__(f"Unknown item id: {item_id!r}")
        self.item_id = item_id


class ComputationInvariantError(GapwiseError):
    """A model produced a value outside its defined range (a logic bug)."""
