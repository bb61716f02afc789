from decimal import Decimal

import pytest

from app.core.errors import InvalidAmount, InvalidStatus, InvalidTransition
from app.models.enums import ShipmentStatus
from app.services.shipment_lifecycle import ShipmentLifecycle


def test_create_starts_pending_and_unassigned(db):
    svc = ShipmentLifecycle()
    s = svc.create(db, shipper_id="shipper-1", estimated_cost=Decimal("50000"))
    db.commit()

    assert s.status == ShipmentStatus.pending.value
    assert s.carrier_id is None
    assert s.estimated_cost == Decimal("50000.00")


def test_create_requires_positive_cost(db):
    with pytest.raises(InvalidAmount):
        ShipmentLifecycle().create(db, shipper_id="shipper-1", estimated_cost=Decimal("0"))


def test_assign_carrier_is_one_way(db, make_shipment):
    svc = ShipmentLifecycle()
    s = make_shipment()

    assert svc.assign_carrier(db, s.id, "fm-1", driver_id="d-1") is True
    db.commit()
    assert svc.assign_carrier(db, s.id, "trucker-2") is False
    db.commit()

    s = svc.get(db, s.id)
    assert s.carrier_id == "fm-1"
    assert s.driver_id == "d-1"
    assert s.status == ShipmentStatus.assigned.value
    assert s.previous_status == ShipmentStatus.pending.value
    assert s.assigned_at is not None


def test_transition_records_previous_status(db, make_shipment):
    svc = ShipmentLifecycle()
    s = make_shipment()
    svc.assign_carrier(db, s.id, "t-1")

    change = svc.transition(db, s.id, "in_transit")
    db.commit()

    assert change.old_status == ShipmentStatus.assigned.value
    assert change.new_status == ShipmentStatus.in_transit.value
    assert change.changed is True
    assert svc.get(db, s.id).previous_status == ShipmentStatus.assigned.value


def test_same_status_is_reported_unchanged(db, make_shipment):
    svc = ShipmentLifecycle()
    s = make_shipment()
    svc.transition(db, s.id, ShipmentStatus.in_transit)
    db.commit()

    change = svc.transition(db, s.id, ShipmentStatus.in_transit)
    assert change.changed is False
    assert change.old_status == change.new_status == ShipmentStatus.in_transit.value


@pytest.mark.parametrize("status", ["teleported", "pending", ""])
def test_unknown_or_initial_status_is_rejected(db, make_shipment, status):
    s = make_shipment()
    with pytest.raises(InvalidStatus):
        ShipmentLifecycle().transition(db, s.id, status)


def test_assigned_comes_only_from_carrier_assignment(db, make_shipment):
    svc = ShipmentLifecycle()
    s = make_shipment()

    with pytest.raises(InvalidStatus):
        svc.transition(db, s.id, ShipmentStatus.assigned)

    db.rollback()
    assert svc.get(db, s.id).status == ShipmentStatus.pending.value
    assert svc.transition(db, s.id, "cancelled").new_status == ShipmentStatus.cancelled.value


def test_terminal_statuses_are_final(db, make_shipment):
    svc = ShipmentLifecycle()
    delivered = make_shipment()
    svc.transition(db, delivered.id, "delivered")
    cancelled = make_shipment()
    svc.transition(db, cancelled.id, "cancelled")
    db.commit()

    with pytest.raises(InvalidTransition):
        svc.transition(db, delivered.id, "in_transit")
    with pytest.raises(InvalidTransition):
        svc.transition(db, cancelled.id, "picked_up")


def test_cancel_only_from_pending(db, make_shipment):
    svc = ShipmentLifecycle()
    s = make_shipment()
    svc.assign_carrier(db, s.id, "t-1")
    db.commit()

    with pytest.raises(InvalidTransition):
        svc.transition(db, s.id, "cancelled")


def test_list_available_excludes_assigned(db, make_shipment):
    svc = ShipmentLifecycle()
    open_one = make_shipment()
    taken = make_shipment()
    svc.assign_carrier(db, taken.id, "t-1")
    db.commit()

    ids = [s.id for s in svc.list_available(db)]
    assert open_one.id in ids
    assert taken.id not in ids
