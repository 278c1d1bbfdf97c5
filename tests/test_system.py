"""
System-level tests for the HCLog application.

These tests run long, mixed sequences of operations through the service and
then check the whole system: the one-active-loan-per-folder rule, what ends
up in the encrypted store, and how the application starts from a fresh,
corrupted or partially failing store.
"""
import json
import logging

import pytest

from hclog import config
from hclog.errors import HCLogError
from hclog.models import STATUS_LOANED
from hclog.service import HCLogService

PEDIATRICS = "Pediatría"
CARDIOLOGY = "Cardiología"
NEONATOLOGY = "Neonatología"


def _assert_single_active_loan(service):
    active = {}
    for record in service.state.records:
        if record.is_active:
            assert record.hc_number not in active, f"H.C. {record.hc_number} is out twice"
            active[record.hc_number] = record


def test_end_to_end_system_state(hospital_service, act_as, clock, store):
    """
    Tests a full day of archive activity and verifies the stored snapshot.

    Covers direct loans, requests (approved, rejected and refused), returns,
    transfers in both directions, clinical details and user deletion, and
    checks the single-active-loan rule after every step.
    """
    service = hospital_service
    service.add_user("neo", "neo123", "invitado", NEONATOLOGY)

    steps = [
        ("admin", lambda: service.register_loan("100, 101, 102", PEDIATRICS, "Dra. Quispe", "984000111",
                                                "2024-05-10T08:00")),
        ("cardio", lambda: service.submit_request("101, 200, 201", CARDIOLOGY)),
        ("neo", lambda: service.submit_request("300", NEONATOLOGY)),
        ("jefa", lambda: service.approve_request(service.get_visible_requests()[0].id)),
        ("pedia", lambda: service.request_return(service.get_records("100")[0].id)),
        ("admin", lambda: service.register_loan("100", CARDIOLOGY, "Dr. Huamán", "984000222", "2024-05-10T10:00")),
        ("admin", lambda: service.confirm_return(service.get_records("100")[0].id, "2024-05-10T11:00", "Ana")),
        ("admin", lambda: service.register_loan("100", CARDIOLOGY, "Dr. Huamán", "984000222", "2024-05-10T11:30")),
        ("pedia", lambda: service.request_transfer(service.get_records("101")[0].id, NEONATOLOGY)),
        ("pedia2", lambda: service.request_transfer(service.get_records("101")[0].id, CARDIOLOGY)),
        ("neo", lambda: service.accept_transfer(service.get_incoming_transfers()[0].id)),
        ("neo", lambda: service.request_transfer(service.get_records("101")[0].id, CARDIOLOGY)),
        ("cardio", lambda: service.accept_transfer(service.get_incoming_transfers()[0].id)),
        ("admin", lambda: service.save_clinical_details("101", "Asma", "Tomo I")),
        ("admin", lambda: service.delete_user("neo")),
    ]
    failures = []
    for username, step in steps:
        act_as(username)
        clock.advance(minutes=7)
        try:
            step()
        except HCLogError as e:
            failures.append((username, type(e).__name__))
        _assert_single_active_loan(service)

    # Loaning 100 again while its return is pending is refused, and so is a
    # second transfer of 101 while the first one is open.
    assert failures == [("admin", "ConflictError"), ("pedia2", "ConflictError")]

    act_as("admin")
    active = {r.hc_number: r.destination_service for r in service.state.records if r.status == STATUS_LOANED}
    assert active == {"100": CARDIOLOGY, "101": CARDIOLOGY, "102": PEDIATRICS, "300": NEONATOLOGY}

    stored_records = store.load_json(config.RECORDS_KEY, [])
    assert sorted(r["id"] for r in stored_records) == sorted(r.id for r in service.state.records)
    stored_users = [u["username"] for u in store.load_json(config.USERS_KEY, [])]
    assert "neo" not in stored_users
    assert all(n["userId"] != "neo" for n in store.load_json(config.NOTIFICATIONS_KEY, []))
    assert store.load_json(config.DETAILS_KEY, {})["101"] == {"antecedents": "Asma", "notes": "Tomo I"}
    assert store.load_json(config.TRANSFERS_KEY, []) == []


def test_fresh_store_seeds_default_admin(service, store):
    stored = store.load_json(config.USERS_KEY, [])
    assert stored == [{"username": "admin", "password": "admin", "role": "admin"}]
    assert service.login("ADMIN", "admin").is_admin
    assert service.login("admin", "Admin") is None


def test_corrupt_slots_start_empty(store, clock, caplog):
    store.set(config.RECORDS_KEY, "{not json")
    store._path_for(config.REQUESTS_KEY).write_bytes(b"tampered")
    store.set(config.USERS_KEY, json.dumps([{"username": "legacy", "role": "admin"}]))

    with caplog.at_level(logging.WARNING):
        restarted = HCLogService(store=store, clock=clock)
    assert restarted.state.records == []
    assert restarted.state.requests == []
    assert [u.username for u in restarted.state.users] == ["admin"]
    assert store.load_json(config.USERS_KEY, [])[0]["password"] == "admin"
    assert any(r.levelno == logging.WARNING for r in caplog.records)


def test_failed_write_keeps_memory_state(hospital_service, store, monkeypatch, caplog):
    """
    Tests that a store write failure is logged and does not roll back or
    interrupt the operation that caused it.
    """
    service = hospital_service

    def broken_set(key, value):
        raise OSError("disk full")

    monkeypatch.setattr(store, "set", broken_set)
    with caplog.at_level(logging.ERROR, logger="hclog.storage"):
        outcome = service.register_loan("111", PEDIATRICS, "Dra. Quispe", "984000111", "2024-05-10T09:00")
    assert outcome.created[0].hc_number == "111"
    assert [r.hc_number for r in service.state.records] == ["111"]
    assert "clinicalHistoryRecords" in caplog.text


@pytest.mark.parametrize("username", ["admin", "pedia"])
def test_refused_operations_write_nothing(hospital_service, act_as, store, monkeypatch, username):
    service = hospital_service
    writes = []
    monkeypatch.setattr(store, "save_json", lambda key, data: writes.append(key) or True)
    act_as(username)
    with pytest.raises(HCLogError):
        service.delete_record(12345)
    assert writes == []
