"""
Stabling Heuristic Module

Proposes bay reassignments for the night so that the morning rollout needs
as little shunting as possible, without ever exceeding the shunting-move
budget or a bay's capacity.

Candidate moves, highest benefit first:
1. Trainsets scheduled for cleaning but not in a cleaning-capable bay
2. Trainsets with no known bay (arrivals) -> service/storage bay
3. Trainsets parked in hard-to-reach bays -> easier service/storage bay

Targets are picked nearest-exit-first: lowest access difficulty, then track
number, then slot position. Moves are applied greedily until the budget is
spent; the rest are reported as deferred.
"""

import logging
from typing import Callable, Optional

from .models import BayType, DepotBay, ShuntingMove, StablingPlan, TrainsetSnapshot

logger = logging.getLogger(__name__)

HARD_ACCESS_THRESHOLD = 7

_CLEANING_BENEFIT = 100.0
_PLACEMENT_BENEFIT = 50.0

_STABLING_TYPES = (BayType.SERVICE, BayType.STORAGE)


def _bay_rank(bay: DepotBay) -> tuple:
    return (bay.geometry.access_difficulty, bay.geometry.track_number, bay.geometry.position, bay.id)


def _pick_bay(
    bays: list[DepotBay],
    free: dict[str, int],
    accept: Callable[[DepotBay], bool],
) -> Optional[DepotBay]:
    candidates = [b for b in bays if free[b.id] > 0 and accept(b)]
    if not candidates:
        return None
    return min(candidates, key=_bay_rank)


def plan_stabling(
    fleet: list[TrainsetSnapshot],
    depot_bays: list[DepotBay],
    cleaning_ids: set[str],
    max_moves: int,
) -> StablingPlan:
    """
    Build a stabling plan bounded by max_moves.

    Pure function: input bays are not mutated (occupancy is tracked on a copy).
    A current_location naming a bay outside depot_bays is treated as unplaced.

    Args:
        fleet: trainsets to stable
        depot_bays: bays with their current occupancy
        cleaning_ids: trainsets that have a cleaning slot tonight
        max_moves: shunting-move budget (hard limit)

    Returns:
        StablingPlan with final bay per trainset, executed moves and deferred trainsets
    """
    bays_by_id = {b.id: b for b in depot_bays}
    free = {b.id: b.capacity - b.current_occupancy for b in depot_bays}
    location: dict[str, Optional[str]] = {
        ts.id: ts.current_location if ts.current_location in bays_by_id else None
        for ts in fleet
    }

    # (benefit, trainset_id, reason, acceptor)
    candidates: list[tuple[float, str, str, Callable[[DepotBay], bool]]] = []
    for ts in fleet:
        current = bays_by_id.get(location[ts.id]) if location[ts.id] else None
        if ts.id in cleaning_ids:
            if current is None or not current.cleaning_capable:
                candidates.append(
                    (_CLEANING_BENEFIT, ts.id, "move to cleaning-capable bay", lambda b: b.cleaning_capable)
                )
            continue
        if current is None:
            candidates.append(
                (_PLACEMENT_BENEFIT, ts.id, "stable unplaced trainset", lambda b: b.type in _STABLING_TYPES)
            )
        elif current.geometry.access_difficulty > HARD_ACCESS_THRESHOLD:
            difficulty = current.geometry.access_difficulty
            candidates.append(
                (
                    float(difficulty),
                    ts.id,
                    f"leave hard-access bay {current.id} (difficulty {difficulty})",
                    lambda b, d=difficulty: b.type in _STABLING_TYPES and b.geometry.access_difficulty < d,
                )
            )

    # Stable sort keeps fleet order among equal benefits
    candidates.sort(key=lambda c: -c[0])

    moves: list[ShuntingMove] = []
    deferred: list[str] = []
    for benefit, trainset_id, reason, accept in candidates:
        if len(moves) >= max_moves:
            deferred.append(trainset_id)
            continue
        source = location[trainset_id]
        target = _pick_bay(depot_bays, free, lambda b: b.id != source and accept(b))
        if target is None:
            deferred.append(trainset_id)
            continue
        free[target.id] -= 1
        if source is not None:
            free[source] += 1
        location[trainset_id] = target.id
        moves.append(
            ShuntingMove(
                trainset_id=trainset_id,
                from_bay=source,
                to_bay=target.id,
                reason=reason,
                benefit=benefit,
            )
        )

    if deferred:
        logger.warning(
            "stabling: %d move(s) deferred (budget %d, used %d): %s",
            len(deferred), max_moves, len(moves), ", ".join(deferred),
        )
    logger.debug("stabling: %d moves planned for %d trainsets", len(moves), len(fleet))

    return StablingPlan(assignments=location, moves=moves, deferred=deferred, max_moves=max_moves)
