"""
Read-only projections of the HCLog state for the current user.

Nothing here is cached: each function recomputes its answer from the state it
is given, so the views always match the latest change.
"""
# hclog/views.py

from hclog.models import (
    STATUS_LOANED, STATUS_PENDING_RETURN, STATUS_RETURNED, STATUS_TRANSFERRED, request_date_sort_key,
)
from hclog.state import same_service

# Display order of the record list: what needs attention first.
STATUS_ORDER = {
    STATUS_PENDING_RETURN: 1,
    STATUS_LOANED: 2,
    STATUS_RETURNED: 3,
    STATUS_TRANSFERRED: 4,
}


def visible_requests(state, user) -> list:
    """Requests the user can see: all of them for admins, their own service's for guests."""
    if user is None:
        return []
    if user.is_admin:
        requests = list(state.requests)
    elif user.is_guest and user.service:
        requests = [r for r in state.requests if same_service(r.destination_service, user.service)]
    else:
        return []
    return sorted(requests, key=lambda r: r.request_timestamp, reverse=True)


def incoming_transfers(state, user) -> list:
    """Transfers waiting for the guest's service to accept or reject them."""
    if user is None or not user.is_guest or not user.service:
        return []
    transfers = [t for t in state.pending_transfers if same_service(t.to_service, user.service)]
    return sorted(transfers, key=lambda t: t.request_timestamp, reverse=True)


def pending_transfer_record_ids(state) -> set:
    return {t.record_id for t in state.pending_transfers}


def filtered_records(state, user, search='', service_filter='') -> list:
    """The record list shown in the main table and used by the exports.

    Guests only see their own service's records. `search` matches, ignoring
    case, against the history number, service, responsible person and status;
    `service_filter` must match the service exactly. Results are ordered by
    status (pending returns first) and then by loan date, newest first.
    """
    if user is None:
        return []
    if user.is_admin or not user.service:
        records = list(state.records)
    else:
        records = [r for r in state.records if same_service(r.destination_service, user.service)]

    term = (search or '').strip().lower()
    if service_filter:
        records = [r for r in records if r.destination_service == service_filter]
    if term:
        records = [
            r for r in records
            if term in r.hc_number.lower()
            or term in r.destination_service.lower()
            or term in r.responsible.lower()
            or term in r.status.lower()
        ]
    # Two stable sorts: newest first, then grouped by status.
    records.sort(key=request_date_sort_key, reverse=True)
    records.sort(key=lambda r: STATUS_ORDER.get(r.status, 99))
    return records


def user_notifications(state, user) -> list:
    if user is None:
        return []
    mine = [n for n in state.notifications if n.user_id == user.username]
    return sorted(mine, key=lambda n: n.timestamp, reverse=True)


def unread_count(state, user) -> int:
    if user is None:
        return 0
    return sum(1 for n in state.notifications if n.user_id == user.username and not n.is_read)


def unique_services(state) -> list:
    """Services that appear on any record, for the admin's filter."""
    return sorted({r.destination_service for r in state.records if r.destination_service})


def guest_services(state) -> list:
    """Services that have at least one guest account, i.e. valid transfer targets."""
    return sorted({u.service for u in state.users if u.is_guest and u.service})


def history_for(state, hc_number) -> list:
    """Every loan cycle of one clinical history number, newest first."""
    records = [r for r in state.records if r.hc_number == hc_number]
    return sorted(records, key=request_date_sort_key, reverse=True)
