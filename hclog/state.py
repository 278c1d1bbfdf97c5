"""
The in-memory state aggregate for HCLog.

`AppState` owns the six collections the application works with. The workflow
functions receive it explicitly and mutate it; the service layer decides when
the touched collections are written to the local store. Lookup helpers used
by more than one workflow step live here so the rules read the same
everywhere.
"""
# hclog/state.py

import logging

from hclog import config
from hclog.models import User, Record, ClinicalDetails, Request, PendingTransfer, Notification, ROLE_ADMIN

logger = logging.getLogger(__name__)

USERS = 'users'
RECORDS = 'records'
CLINICAL_DETAILS = 'clinical_details'
REQUESTS = 'requests'
PENDING_TRANSFERS = 'pending_transfers'
NOTIFICATIONS = 'notifications'

# Collection attribute -> storage slot key.
SLOT_KEYS = {
    USERS: config.USERS_KEY,
    RECORDS: config.RECORDS_KEY,
    CLINICAL_DETAILS: config.DETAILS_KEY,
    REQUESTS: config.REQUESTS_KEY,
    PENDING_TRANSFERS: config.TRANSFERS_KEY,
    NOTIFICATIONS: config.NOTIFICATIONS_KEY,
}


def default_users() -> list:
    """The user list a fresh installation starts with."""
    return [User(config.DEFAULT_ADMIN_USERNAME, config.DEFAULT_ADMIN_PASSWORD, ROLE_ADMIN)]


def same_service(a, b) -> bool:
    """Compares two service names ignoring case and surrounding whitespace."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


class AppState:
    """Holds every collection of the application."""

    def __init__(self, users=None, records=None, clinical_details=None, requests=None,
                 pending_transfers=None, notifications=None):
        self.users = list(users) if users is not None else default_users()
        self.records = list(records or [])
        self.clinical_details = dict(clinical_details or {})
        self.requests = list(requests or [])
        self.pending_transfers = list(pending_transfers or [])
        self.notifications = list(notifications or [])

    # Lookups

    def find_user(self, username):
        wanted = (username or '').strip().lower()
        return next((u for u in self.users if u.username.lower() == wanted), None)

    def find_record(self, record_id):
        return next((r for r in self.records if r.id == record_id), None)

    def find_request(self, request_id):
        return next((r for r in self.requests if r.id == request_id), None)

    def find_transfer(self, transfer_id):
        return next((t for t in self.pending_transfers if t.id == transfer_id), None)

    def admins(self) -> list:
        return [u for u in self.users if u.is_admin]

    def active_hc_numbers(self, exclude_record_id=None) -> set:
        """Clinical history numbers currently out with a service."""
        return {r.hc_number for r in self.records if r.is_active and r.id != exclude_record_id}

    def requested_hc_numbers(self) -> set:
        """Clinical history numbers listed in any open request."""
        return {hc for req in self.requests for hc in req.hc_number_list}

    @staticmethod
    def new_id(items, now_ms: int) -> int:
        """Returns a time-based id strictly greater than every id in `items`."""
        highest = max((int(item.id) for item in items), default=0)
        return max(int(now_ms), highest + 1)

    # Serialization

    def slot_payload(self, collection: str):
        """Returns the JSON-serializable snapshot of one collection."""
        if collection == CLINICAL_DETAILS:
            return {hc: details.to_dict() for hc, details in self.clinical_details.items()}
        return [item.to_dict() for item in getattr(self, collection)]

    def to_slots(self) -> dict:
        return {SLOT_KEYS[name]: self.slot_payload(name) for name in SLOT_KEYS}

    @classmethod
    def from_slots(cls, slots: dict) -> 'AppState':
        """Builds the state from raw slot payloads, as read from the store.

        Missing or malformed slots fall back to their empty defaults. The user
        list is reseeded with the default administrator when it is missing,
        empty, or predates password support.
        """
        raw_users = slots.get(config.USERS_KEY)
        users = _parse_items(raw_users, User.from_dict) if has_valid_users(raw_users) else None
        raw_details = slots.get(config.DETAILS_KEY) or {}
        try:
            clinical_details = {str(hc): ClinicalDetails.from_dict(d) for hc, d in raw_details.items()}
        except (AttributeError, TypeError):
            logger.warning("Discarding malformed clinical details snapshot.")
            clinical_details = {}
        return cls(
            users=users or None,
            records=_parse_items(slots.get(config.RECORDS_KEY), Record.from_dict),
            clinical_details=clinical_details,
            requests=_parse_items(slots.get(config.REQUESTS_KEY), Request.from_dict),
            pending_transfers=_parse_items(slots.get(config.TRANSFERS_KEY), PendingTransfer.from_dict),
            notifications=_parse_items(slots.get(config.NOTIFICATIONS_KEY), Notification.from_dict),
        )


def has_valid_users(raw_users) -> bool:
    """True when a stored user list can be used instead of the default seed."""
    return (
        isinstance(raw_users, list)
        and len(raw_users) > 0
        and isinstance(raw_users[0], dict)
        and bool(raw_users[0].get('password'))
    )


def _parse_items(raw, factory) -> list:
    """Converts a stored list with `factory`, or returns [] if any item is malformed."""
    if not raw:
        return []
    try:
        return [factory(item) for item in raw]
    except (KeyError, TypeError, AttributeError, ValueError):
        logger.warning("Discarding malformed snapshot for %s.", factory.__qualname__.split('.')[0])
        return []
