"""Similarity groups of analyzed frames, for side-by-side review."""

from dataclasses import dataclass
from typing import Dict, List, Sequence

from .analysis import FrameAnalysis, similarity


@dataclass(frozen=True)
class SimilarityGroup:
    """Frames grouped around a representative; members start with it."""
    representative: int
    members: List[int]


def group_similar(
    analyses: Sequence[FrameAnalysis],
    similarity_threshold: float,
) -> Dict[int, List[int]]:
    """
    Greedy grouping around first-seen representatives.

    Each unassigned hashed frame starts a group and claims every later
    unassigned frame at least similarity_threshold similar to it. Only groups
    with two or more members are returned.

    This is not the same relation as duplicate flagging: members are compared
    with the representative only, never with each other.

    Returns:
        representative frame_number -> member frame_numbers (representative first)
    """
    groups: Dict[int, List[int]] = {}
    assigned = set()

    for i, current in enumerate(analyses):
        if current.perceptual_hash is None or i in assigned:
            continue

        members = [current.frame_number]
        assigned.add(i)

        for j in range(i + 1, len(analyses)):
            other = analyses[j]
            if other.perceptual_hash is None or j in assigned:
                continue
            if similarity(current.perceptual_hash, other.perceptual_hash) >= similarity_threshold:
                members.append(other.frame_number)
                assigned.add(j)

        if len(members) > 1:
            groups[current.frame_number] = members

    return groups


def similarity_groups(
    analyses: Sequence[FrameAnalysis],
    similarity_threshold: float,
) -> List[SimilarityGroup]:
    """group_similar() as a list of SimilarityGroup records."""
    return [
        SimilarityGroup(representative=rep, members=members)
        for rep, members in group_similar(analyses, similarity_threshold).items()
    ]
