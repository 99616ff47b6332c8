"""
Demo Depot Definition Module

This module defines a small demo depot:
- build_demo_fleet(now) -> 4 trainsets (TS-101, TS-205, TS-317, TS-442)
- build_demo_bays() -> 5 bays (2 service, 1 maintenance, 1 cleaning, 1 storage)
- build_demo_constraints() -> min_standby 1, max_service 2, cleaning capacity 1
- DemoSnapshotSource: snapshot source for the service, CLI and HTTP server

The fleet is arranged so that:
- TS-205 has an expired fitness certificate (forced to maintenance)
- TS-101 sits just over the mileage threshold, so every trainset is scored
- TS-442 runs well above average mileage, expires in exactly 3 days, and sits
  in a hard-to-reach storage bay
- TS-205 and TS-442 both need cleaning but there is one cleaning slot
"""

from datetime import datetime, timedelta

from .models import (
    BayGeometry,
    BayType,
    BrandingContract,
    ComponentWear,
    DepotBay,
    GlobalConstraints,
    HealthStatus,
    OrchestratorRunInput,
    Subsystem,
    SystemHealth,
    TrainsetSnapshot,
    WorkOrder,
    WorkOrderType,
)


def _healthy(now: datetime) -> SystemHealth:
    return SystemHealth(statuses={s: HealthStatus.OK for s in Subsystem}, last_updated=now)


def _wear(now: datetime, brake_pads: float, hvac: float, bogies: float, doors: float) -> ComponentWear:
    return ComponentWear(
        brake_pads=brake_pads,
        hvac_system=hvac,
        bogies=bogies,
        doors=doors,
        last_inspection=now - timedelta(days=5),
    )


def _branding(contract_id: str, advertiser: str, remaining: float, now: datetime) -> BrandingContract:
    return BrandingContract(
        id=contract_id,
        advertiser=advertiser,
        committed_hours=40,
        remaining_hours=remaining,
        penalty_rate=500,
        expiry_date=now + timedelta(days=30),
    )


def build_demo_fleet(now: datetime) -> list[TrainsetSnapshot]:
    """
    Build the 4-trainset demo fleet relative to `now`.

    Returns:
        list[TrainsetSnapshot]
    """
    # TS-101: 122,000 km (just past the mileage threshold), fit for 7 days, no work orders, 18 branding hours
    ts_101 = TrainsetSnapshot(
        id="TS-101",
        km=122_000,
        fitness_valid_until=now + timedelta(days=7),
        branding_contracts=[_branding("BR-001", "Kerala Tourism", 18, now)],
        cleaning_required=False,
        last_cleaning_date=now - timedelta(days=1),
        current_location="SB-01",
        system_health=_healthy(now),
        component_wear=_wear(now, 35, 30, 40, 25),
    )

    # TS-205: fitness expired yesterday, 2 non-critical work orders, needs cleaning
    ts_205 = TrainsetSnapshot(
        id="TS-205",
        km=80_500,
        fitness_valid_until=now - timedelta(days=1),
        open_work_orders=[
            WorkOrder(
                id="WO-2051",
                type=WorkOrderType.PREVENTIVE,
                system=Subsystem.HVAC,
                priority=4,
                estimated_hours=3,
                due_date=now + timedelta(days=2),
                description="HVAC filter replacement",
            ),
            WorkOrder(
                id="WO-2052",
                type=WorkOrderType.CORRECTIVE,
                system=Subsystem.DOORS,
                priority=6,
                estimated_hours=2,
                due_date=now + timedelta(days=1),
                description="Door sensor recalibration",
            ),
        ],
        branding_contracts=[_branding("BR-002", "Lulu Mall", 4, now)],
        cleaning_required=True,
        last_cleaning_date=now - timedelta(days=4),
        current_location="MB-01",
        system_health=_healthy(now),
        component_wear=_wear(now, 55, 60, 50, 45),
    )

    # TS-317: fit for 30 days, one preventive work order, 10 branding hours
    ts_317 = TrainsetSnapshot(
        id="TS-317",
        km=45_200,
        fitness_valid_until=now + timedelta(days=30),
        open_work_orders=[
            WorkOrder(
                id="WO-3171",
                type=WorkOrderType.PREVENTIVE,
                system=Subsystem.BRAKES,
                priority=3,
                estimated_hours=2,
                due_date=now + timedelta(days=5),
                description="Brake pad inspection",
            ),
        ],
        branding_contracts=[_branding("BR-003", "Federal Bank", 10, now)],
        cleaning_required=False,
        last_cleaning_date=now - timedelta(days=1),
        current_location="SB-01",
        system_health=_healthy(now),
        component_wear=_wear(now, 20, 25, 15, 20),
    )

    # TS-442: high mileage, fitness expires in exactly 3 days, parked in hard-access storage
    ts_442 = TrainsetSnapshot(
        id="TS-442",
        km=160_000,
        fitness_valid_until=now + timedelta(days=3),
        cleaning_required=True,
        last_cleaning_date=now - timedelta(days=2),
        current_location="ST-01",
        system_health=_healthy(now),
        component_wear=_wear(now, 70, 65, 75, 60),
    )

    return [ts_101, ts_205, ts_317, ts_442]


def build_demo_bays() -> list[DepotBay]:
    return [
        DepotBay(
            id="SB-01", type=BayType.SERVICE, capacity=2, current_occupancy=2,
            geometry=BayGeometry(track_number=1, position=0, access_difficulty=2),
        ),
        DepotBay(
            id="SB-02", type=BayType.SERVICE, capacity=2, current_occupancy=0,
            geometry=BayGeometry(track_number=2, position=0, access_difficulty=3),
        ),
        DepotBay(
            id="MB-01", type=BayType.MAINTENANCE, capacity=2, current_occupancy=1,
            maintenance_capable=True,
            geometry=BayGeometry(track_number=5, position=1, access_difficulty=5),
        ),
        DepotBay(
            id="CB-01", type=BayType.CLEANING, capacity=1, current_occupancy=0,
            cleaning_capable=True,
            geometry=BayGeometry(track_number=4, position=0, access_difficulty=4),
        ),
        DepotBay(
            id="ST-01", type=BayType.STORAGE, capacity=2, current_occupancy=1,
            geometry=BayGeometry(track_number=8, position=3, access_difficulty=8),
        ),
    ]


def build_demo_constraints() -> GlobalConstraints:
    return GlobalConstraints(min_standby=1, max_service=2, cleaning_bay_capacity=1)


def build_demo_input(now: datetime) -> OrchestratorRunInput:
    return OrchestratorRunInput(
        fleet=build_demo_fleet(now),
        constraints=build_demo_constraints(),
        depot_bays=build_demo_bays(),
    )


class DemoSnapshotSource:
    """Snapshot source that rebuilds the demo depot for each planning time."""

    def load(self, now: datetime) -> OrchestratorRunInput:
        return build_demo_input(now)
