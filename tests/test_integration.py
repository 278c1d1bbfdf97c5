"""
Integration tests for the HCLog application.

These tests drive the `HCLogService` the way the GUI does: one logged-in user
at a time, switching sessions between steps. They verify that the workflow
steps, the views and the persistence mirroring work together for the loan,
request, return and transfer scenarios.
"""
import pytest

from hclog.errors import ConflictError, NotFoundError, PermissionDeniedError
from hclog.models import NO_PHONE, STATUS_LOANED, STATUS_PENDING_RETURN, STATUS_RETURNED, STATUS_TRANSFERRED
from hclog.service import HCLogService

PEDIATRICS = "Pediatría"
CARDIOLOGY = "Cardiología"


def _by_hc(service, hc):
    return [r for r in service.state.records if r.hc_number == hc]


def test_loan_return_scenario(hospital_service, act_as, clock):
    """
    Admin lends "111, 222" to Pediatría, a Pediatría guest asks to return 111,
    and the admin confirms the reception. 222 stays on loan.
    """
    service = hospital_service
    outcome = service.register_loan("111, 222", PEDIATRICS, "Dra. Quispe", "984000111", "2024-05-10T09:00")
    assert len(outcome.created) == 2
    assert all(r.status == STATUS_LOANED for r in outcome.created)

    act_as("pedia")
    record_111 = _by_hc(service, "111")[0]
    clock.advance(hours=3)
    service.request_return(record_111.id)
    assert record_111.status == STATUS_PENDING_RETURN
    admin_alerts = [n for n in service.state.notifications if n.user_id in ("admin", "jefa")]
    assert len(admin_alerts) == 2

    act_as("admin")
    assert service.get_unread_count() == 1
    service.confirm_return(record_111.id, "2024-05-10T12:30", "Ana")
    assert record_111.status == STATUS_RETURNED
    assert record_111.return_date == "2024-05-10T12:30"
    assert record_111.receiving_staff_name == "Ana"
    assert _by_hc(service, "222")[0].status == STATUS_LOANED


def test_request_approval_scenario(hospital_service, act_as, clock):
    """
    A guest request for "333" is approved by a different admin. A request for
    a number that was lent directly in the meantime cannot be approved.
    """
    service = hospital_service
    act_as("pedia")
    request = service.submit_request("333", PEDIATRICS).created[0]
    clock.advance(minutes=1)
    late_request = service.submit_request("111", PEDIATRICS).created[0]
    assert [r.id for r in service.get_visible_requests()] == [late_request.id, request.id]

    act_as("admin")
    clock.advance(minutes=5)
    outcome = service.approve_request(request.id)
    assert service.state.find_request(request.id) is None
    new_record = outcome.created[0]
    assert (new_record.hc_number, new_record.status, new_record.responsible) == ("333", STATUS_LOANED, "pedia")
    assert new_record.responsible_phone_number == NO_PHONE

    service.register_loan("111", CARDIOLOGY, "Dr. Huamán", "984000222", "2024-05-10T09:10")
    act_as("cardio")
    service.request_return(_by_hc(service, "111")[0].id)
    assert _by_hc(service, "111")[0].status == STATUS_PENDING_RETURN
    act_as("admin")
    with pytest.raises(ConflictError) as excinfo:
        service.approve_request(late_request.id)
    assert excinfo.value.loaned_out == ["111"]
    assert service.state.find_request(late_request.id) is late_request


def test_admin_cannot_approve_own_request(hospital_service):
    service = hospital_service
    request = service.submit_request("555", PEDIATRICS).created[0]
    with pytest.raises(PermissionDeniedError):
        service.approve_request(request.id)
    assert service.get_visible_requests() == [request]


def test_partial_request_reports_excluded_numbers(hospital_service, act_as):
    service = hospital_service
    service.register_loan("111", CARDIOLOGY, "Dr. Huamán", "984000222", "2024-05-10T09:00")
    act_as("pedia")
    outcome = service.submit_request("111, 333", PEDIATRICS)
    assert outcome.created[0].hc_number_list == ["333"]
    assert "111" in outcome.info

    with pytest.raises(ConflictError) as excinfo:
        service.submit_request("111, 333", PEDIATRICS)
    assert sorted(excinfo.value.hc_numbers) == ["111", "333"]
    assert len(service.state.requests) == 1


def test_rejected_request_frees_its_numbers(hospital_service, act_as):
    service = hospital_service
    act_as("pedia")
    request = service.submit_request("333", PEDIATRICS).created[0]
    act_as("admin")
    service.reject_request(request.id, "Historia en archivo pasivo")

    act_as("pedia2")
    assert service.submit_request("333", PEDIATRICS).created[0].hc_numbers == "333"
    act_as("pedia")
    notifications = service.open_notifications()
    assert len(notifications) == 1
    assert "Historia en archivo pasivo" in notifications[0].message
    assert service.get_unread_count() == 0


def test_transfer_scenario(hospital_service, act_as, clock):
    """
    A Pediatría guest hands a loaned folder over to Cardiología, whose guest
    accepts. The source record closes as transferred and a single new loan
    exists for Cardiología.
    """
    service = hospital_service
    service.register_loan("777", PEDIATRICS, "Dra. Quispe", "984000111", "2024-05-10T09:00")
    source = _by_hc(service, "777")[0]

    act_as("pedia")
    assert CARDIOLOGY in service.get_guest_services()
    transfer = service.request_transfer(source.id, CARDIOLOGY).created[0]
    assert service.get_pending_transfer_record_ids() == {source.id}
    assert service.get_incoming_transfers() == []

    act_as("cardio")
    assert service.get_incoming_transfers() == [transfer]
    clock.advance(hours=1)
    service.accept_transfer(transfer.id)

    records = _by_hc(service, "777")
    assert source.status == STATUS_TRANSFERRED
    active = [r for r in records if r.is_active]
    assert len(active) == 1
    assert active[0].destination_service == CARDIOLOGY
    assert active[0].status == STATUS_LOANED
    assert service.state.pending_transfers == []
    assert [r.hc_number for r in service.get_records()] == ["777"]

    act_as("pedia")
    assert [r.status for r in service.get_records()] == [STATUS_TRANSFERRED]
    assert service.get_unread_count() == 1


def test_history_deletion_leaves_pending_transfer_unresolvable(hospital_service, act_as):
    service = hospital_service
    service.register_loan("888", PEDIATRICS, "Dra. Quispe", "984000111", "2024-05-10T09:00")
    act_as("pedia")
    transfer = service.request_transfer(_by_hc(service, "888")[0].id, CARDIOLOGY).created[0]

    act_as("admin")
    service.delete_history("888", confirmed=True)
    assert service.get_history("888") == []

    act_as("cardio")
    with pytest.raises(NotFoundError):
        service.accept_transfer(transfer.id)
    service.reject_transfer(transfer.id)
    assert service.state.pending_transfers == []


def test_user_deletion_cascades(hospital_service, act_as):
    service = hospital_service
    act_as("pedia")
    service.submit_request("333", PEDIATRICS)
    act_as("admin")
    service.reject_request(service.get_visible_requests()[0].id, "Duplicada")
    act_as("pedia")
    service.submit_request("444", PEDIATRICS)

    act_as("admin")
    service.delete_user("pedia")
    assert all(r.requester_name != "pedia" for r in service.state.requests)
    assert all(n.user_id != "pedia" for n in service.state.notifications)
    assert service.login("pedia", "pedia123") is None


def test_state_survives_a_restart(hospital_service, act_as, store, clock):
    service = hospital_service
    service.register_loan("111", PEDIATRICS, "Dra. Quispe", "984000111", "2024-05-10T09:00")
    service.save_clinical_details("111", "Diabetes tipo 2", "Tomo II")
    act_as("pedia")
    service.submit_request("222", PEDIATRICS)

    restarted = HCLogService(store=store, clock=clock)
    assert [u.username for u in restarted.get_all_users()] == ["admin", "jefa", "pedia", "pedia2", "cardio"]
    assert restarted.state.find_user("pedia").service == PEDIATRICS
    assert [r.hc_number for r in restarted.state.records] == ["111"]
    assert restarted.state.requests[0].hc_numbers == "222"
    assert restarted.get_clinical_details("111").antecedents == "Diabetes tipo 2"
    assert restarted.get_clinical_details("999").notes == ""
