"""Placement of the selector dropdown relative to its trigger."""

from dataclasses import dataclass

EDGE_MARGIN = 10
MIN_DROPDOWN_WIDTH = 300
DEFAULT_MAX_HEIGHT = 300
DEFAULT_OFFSET = 4

PLACEMENTS = ("auto", "top", "bottom")


@dataclass(frozen=True)
class Rect:
    """Bounding box in viewport coordinates."""

    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float


@dataclass(frozen=True)
class Placement:
    top: float
    left: float
    width: float
    side: str  # "top" or "bottom"


def compute_placement(
    trigger: Rect,
    viewport: Viewport,
    max_height: float = DEFAULT_MAX_HEIGHT,
    placement: str = "auto",
    offset: float = DEFAULT_OFFSET,
) -> Placement:
    """Place the dropdown below the trigger, flipping above when needed.

    With ``placement="auto"`` the dropdown flips above only when the space
    below is smaller than ``max_height`` and the space above is larger than
    the space below. Horizontally it is kept inside the viewport with a
    fixed margin and never narrower than ``MIN_DROPDOWN_WIDTH``.
    """
    if placement not in PLACEMENTS:
        raise ValueError(f"Unknown placement '{placement}'")

    space_below = viewport.height - trigger.bottom - offset
    space_above = trigger.top - offset

    if placement == "auto":
        side = "top" if space_below < max_height and space_above > space_below else "bottom"
    else:
        side = placement

    if side == "top":
        top = trigger.top - max_height - offset
    else:
        top = trigger.bottom + offset

    width = max(trigger.width, MIN_DROPDOWN_WIDTH)
    left = trigger.left
    if left + width > viewport.width:
        left = viewport.width - width - EDGE_MARGIN
    if left < EDGE_MARGIN:
        left = EDGE_MARGIN

    return Placement(top=max(EDGE_MARGIN, top), left=left, width=width, side=side)
