"""Read-only roadmap viewer.

Milestones are grouped into five fixed phases by position:
phase_size = ceil(total / 5) and phase = min(index // phase_size, 4).
"""

import math
from dataclasses import dataclass

from app.core.errors import NotFoundError
from app.schemas.gateway import Milestone, Roadmap
from app.services.gateway_api import GatewayApi


@dataclass(frozen=True)
class Phase:
    """One of the five fixed roadmap phases."""

    id: str
    name: str
    number: int


PHASES: tuple[Phase, ...] = (
    Phase("self-discovery", "Self Discovery", 1),
    Phase("skill-deepening", "Skill Deepening", 2),
    Phase("hands-on", "Hands On", 3),
    Phase("networking", "Networking", 4),
    Phase("career-launch", "Career Launch", 5),
)


def phase_index(index: int, total: int) -> int:
    """Phase position (0-4) for the milestone at ``index`` of ``total``.

    Raises:
        ValueError: index outside 0..total-1.
    """
    if not 0 <= index < total:
        raise ValueError(f"Milestone index {index} out of range for {total} milestones")
    phase_size = math.ceil(total / len(PHASES))
    return min(index // phase_size, len(PHASES) - 1)


@dataclass(frozen=True)
class PhaseGroup:
    """A phase with the milestones bucketed into it."""

    phase: Phase
    milestones: tuple[Milestone, ...]

    @property
    def label(self) -> str:
        return f"Phase {self.phase.number} - {self.phase.name}"

    @property
    def is_finished(self) -> bool:
        return all(m.status == "completed" for m in self.milestones)


def group_milestones(milestones: list[Milestone]) -> list[PhaseGroup]:
    """Bucket milestones into the five phases, keeping their order.

    Every phase appears in the result, possibly empty.
    """
    buckets: list[list[Milestone]] = [[] for _ in PHASES]
    total = len(milestones)
    for index, milestone in enumerate(milestones):
        buckets[phase_index(index, total)].append(milestone)
    return [
        PhaseGroup(phase=phase, milestones=tuple(bucket))
        for phase, bucket in zip(PHASES, buckets, strict=True)
    ]


def default_active_phase(groups: list[PhaseGroup]) -> str:
    """First phase with unfinished milestones, else the first phase."""
    for group in groups:
        if group.milestones and not group.is_finished:
            return group.phase.id
    return PHASES[0].id


class RoadmapViewer:
    """Loads a roadmap and tracks which phase is shown."""

    def __init__(self, api: GatewayApi) -> None:
        self._api = api
        self.roadmap: Roadmap | None = None
        self.groups: list[PhaseGroup] = []
        self.active_phase_id: str = PHASES[0].id

    async def load(self, roadmap_id: str | None = None) -> Roadmap:
        """Fetch a roadmap by id, or the most recent one.

        Raises:
            NotFoundError: No id given and the user has no roadmaps.
            APIError: Gateway failure.
        """
        if roadmap_id:
            roadmap = await self._api.get_roadmap(roadmap_id)
        else:
            listing = await self._api.list_roadmaps()
            if not listing.roadmaps:
                raise NotFoundError("Roadmap")
            roadmap = max(
                listing.roadmaps,
                key=lambda r: r.created_at.timestamp() if r.created_at else float("-inf"),
            )
        self.roadmap = roadmap
        self.groups = group_milestones(roadmap.milestones)
        self.active_phase_id = default_active_phase(self.groups)
        return roadmap

    def select_phase(self, phase_id: str) -> None:
        """Show a different phase. Unknown ids are ignored."""
        if any(p.id == phase_id for p in PHASES):
            self.active_phase_id = phase_id

    @property
    def active_group(self) -> PhaseGroup | None:
        for group in self.groups:
            if group.phase.id == self.active_phase_id:
                return group
        return None
