"""
KPI Projection Module

Computes forward-looking KPI estimates for a proposed plan. Projections are
derived outputs; they never feed back into role decisions.

- compute_kpi_projections(assignments, fleet, constraints, shunting_moves) -> KPIProjections

Projections:
- punctuality_rate: max(0.90, punctuality_target - 0.005 x total risk factors)
- mileage_balance: max(0, 1 - stddev(km) / mileage_balance_threshold)
- branding_fulfillment: branding hours on service trainsets / all branding hours
- maintenance_compliance: min(1, maintenance assignments / trainsets needing maintenance)
- energy_efficiency: 0.80 + 0.18 / (1 + shunting_moves), in (0.80, 0.98]
"""

import logging
import math

from .models import GlobalConstraints, InductionAssignment, KPIProjections, Role, TrainsetSnapshot

logger = logging.getLogger(__name__)

PUNCTUALITY_FLOOR = 0.90
PUNCTUALITY_PENALTY_PER_RISK = 0.005
ENERGY_EFFICIENCY_FLOOR = 0.80
ENERGY_EFFICIENCY_SPAN = 0.18


def mileage_stddev(fleet: list[TrainsetSnapshot]) -> float:
    """Population standard deviation of fleet mileage (0 for an empty fleet)."""
    if not fleet:
        return 0.0
    kms = [ts.km for ts in fleet]
    mean = sum(kms) / len(kms)
    return math.sqrt(sum((km - mean) ** 2 for km in kms) / len(kms))


def energy_efficiency(shunting_moves: int) -> float:
    """Bounded estimate, strictly decreasing in the number of depot moves."""
    return ENERGY_EFFICIENCY_FLOOR + ENERGY_EFFICIENCY_SPAN / (1 + max(0, shunting_moves))


def compute_kpi_projections(
    assignments: list[InductionAssignment],
    fleet: list[TrainsetSnapshot],
    constraints: GlobalConstraints,
    shunting_moves: int = 0,
) -> KPIProjections:
    """
    Compute KPI projections for a set of assignments.

    Pure function: does not mutate inputs, no I/O.

    Args:
        assignments: role assignments of the plan
        fleet: fleet snapshot the plan was built from
        constraints: constraints used for the run
        shunting_moves: moves in the stabling plan

    Returns:
        KPIProjections
    """
    # 1. Punctuality
    risk_count = sum(len(a.risk_factors) for a in assignments)
    punctuality_rate = max(
        PUNCTUALITY_FLOOR,
        constraints.punctuality_target - risk_count * PUNCTUALITY_PENALTY_PER_RISK,
    )

    # 2. Mileage balance
    mileage_balance = max(0.0, 1 - mileage_stddev(fleet) / constraints.mileage_balance_threshold)

    # 3. Branding fulfillment
    branding_by_id = {ts.id: ts.branding_hours_remaining() for ts in fleet}
    total_branding = sum(branding_by_id.values())
    service_branding = sum(
        branding_by_id.get(a.trainset_id, 0.0) for a in assignments if a.role == Role.SERVICE
    )
    branding_fulfillment = service_branding / total_branding if total_branding > 0 else 1.0

    # 4. Maintenance compliance
    maintenance_assigned = sum(1 for a in assignments if a.role == Role.MAINTENANCE)
    needing_maintenance = sum(1 for ts in fleet if ts.needs_maintenance())
    maintenance_compliance = (
        min(1.0, maintenance_assigned / needing_maintenance) if needing_maintenance > 0 else 1.0
    )

    projections = KPIProjections(
        punctuality_rate=punctuality_rate,
        mileage_balance=mileage_balance,
        branding_fulfillment=branding_fulfillment,
        maintenance_compliance=maintenance_compliance,
        energy_efficiency=energy_efficiency(shunting_moves),
    )

    logger.debug(
        "compute_kpi_projections: punctuality=%.4f mileage=%.3f branding=%.3f maintenance=%.3f energy=%.3f",
        projections.punctuality_rate,
        projections.mileage_balance,
        projections.branding_fulfillment,
        projections.maintenance_compliance,
        projections.energy_efficiency,
    )

    return projections
