"""
Data Provider Module

The planner never talks to work-order systems, sensor gateways or messaging
bots directly. It consumes a DataProvider: a synchronous capability that
returns already-fetched snapshots.

- MaintenanceJobCard: job card from the work-order system
- SensorReading: one telemetry reading
- OperatorMessage: operator-submitted priority message, already parsed
- StaticDataProvider: fixed in-memory data (tests, demos, replay)
- NullDataProvider: no external data, perfect quality
- apply_job_cards(): fold open job cards into the fleet as WorkOrders
"""

import logging
from datetime import datetime
from typing import Literal, Optional, Protocol

from pydantic import BaseModel, Field

from .models import (
    DataQualityMetrics,
    RecommendationAction,
    Subsystem,
    TrainsetSnapshot,
    WorkOrder,
    WorkOrderType,
)

logger = logging.getLogger(__name__)


class MaintenanceJobCard(BaseModel):
    work_order_id: str
    trainset_id: str
    status: Literal["open", "in_progress", "closed"] = "open"
    type: WorkOrderType = WorkOrderType.CORRECTIVE
    priority: int = Field(default=5, ge=1, le=10)
    system: Subsystem
    description: str = ""
    estimated_hours: float = Field(default=1.0, ge=0)
    due_date: datetime


class SensorReading(BaseModel):
    trainset_id: str
    sensor_type: str
    value: float
    unit: str
    timestamp: datetime
    status: Literal["normal", "warning", "critical"] = "normal"
    location: str = ""


class OperatorMessage(BaseModel):
    """A parsed priority message from an operator channel."""
    message_id: str
    trainset_id: str
    action: RecommendationAction
    priority: int = Field(default=5, ge=1, le=10)
    details: str = ""
    author: str = "operator"
    timestamp: Optional[datetime] = None


class DataProvider(Protocol):
    def job_cards(self) -> list[MaintenanceJobCard]: ...

    def sensor_readings(self) -> list[SensorReading]: ...

    def operator_messages(self) -> list[OperatorMessage]: ...

    def data_quality(self) -> DataQualityMetrics: ...


class StaticDataProvider:
    """DataProvider backed by fixed lists. Quality metrics are explicit inputs."""

    def __init__(
        self,
        job_cards: Optional[list[MaintenanceJobCard]] = None,
        sensor_readings: Optional[list[SensorReading]] = None,
        operator_messages: Optional[list[OperatorMessage]] = None,
        quality: Optional[DataQualityMetrics] = None,
    ):
        self._job_cards = list(job_cards or [])
        self._sensor_readings = list(sensor_readings or [])
        self._operator_messages = list(operator_messages or [])
        self._quality = quality or DataQualityMetrics()

    def job_cards(self) -> list[MaintenanceJobCard]:
        return list(self._job_cards)

    def sensor_readings(self) -> list[SensorReading]:
        return list(self._sensor_readings)

    def operator_messages(self) -> list[OperatorMessage]:
        return list(self._operator_messages)

    def data_quality(self) -> DataQualityMetrics:
        return self._quality.model_copy()


class NullDataProvider(StaticDataProvider):
    def __init__(self):
        super().__init__()


def apply_job_cards(
    fleet: list[TrainsetSnapshot], job_cards: list[MaintenanceJobCard]
) -> list[TrainsetSnapshot]:
    """
    Return a new fleet with open job cards added as WorkOrders.

    Closed cards, cards already present (same work order id) and cards naming
    trainsets outside the fleet are skipped. The input fleet is not mutated.
    """
    by_trainset: dict[str, list[MaintenanceJobCard]] = {}
    fleet_ids = {ts.id for ts in fleet}
    for card in job_cards:
        if card.status == "closed":
            continue
        if card.trainset_id not in fleet_ids:
            logger.debug("job card %s names unknown trainset %s", card.work_order_id, card.trainset_id)
            continue
        by_trainset.setdefault(card.trainset_id, []).append(card)

    merged: list[TrainsetSnapshot] = []
    for ts in fleet:
        cards = by_trainset.get(ts.id)
        if not cards:
            merged.append(ts.model_copy(deep=True))
            continue
        existing = {wo.id for wo in ts.open_work_orders}
        work_orders = [wo.model_copy() for wo in ts.open_work_orders]
        for card in cards:
            if card.work_order_id in existing:
                continue
            work_orders.append(
                WorkOrder(
                    id=card.work_order_id,
                    type=card.type,
                    system=card.system,
                    priority=card.priority,
                    estimated_hours=card.estimated_hours,
                    due_date=card.due_date,
                    description=card.description,
                )
            )
        merged.append(ts.model_copy(update={"open_work_orders": work_orders}, deep=True))
    return merged
