"""
This module provides the application service for HCLog.

It defines the `HCLogService` class, which is responsible for:
- Loading every collection from the local store once, at start-up.
- Authenticating users (login, logout) and tracking the session's current user.
- Running workflow steps against the in-memory `AppState` on behalf of the current user.
- Mirroring each collection a step touched back to the store (best-effort).
- Exposing the read-only views the GUI renders.
"""
# hclog/service.py

import logging
from datetime import datetime

from hclog import config
from hclog import views
from hclog import workflow
from hclog.encryption import get_encryptor
from hclog.errors import HCLogError
from hclog.models import ClinicalDetails
from hclog.state import AppState, SLOT_KEYS, CLINICAL_DETAILS, USERS, has_valid_users
from hclog.storage import LocalStore

logger = logging.getLogger(__name__)


class HCLogService:
    """Owns the application state and the session for one HCLog instance."""

    def __init__(self, store=None, clock=None):
        """Initializes the service and loads the stored state.

        Args:
            store (LocalStore, optional): The key-value store. Defaults to an
                encrypted store under `config.DATA_DIR`.
            clock (callable, optional): Returns the current datetime. Defaults to `datetime.now`.
        """
        self.current_user = None
        self.clock = clock or datetime.now
        self._store = store or LocalStore(config.DATA_DIR, get_encryptor(config.KEY_FILE))
        self.state = self._load_state()

    def _load_state(self) -> AppState:
        """Reads every slot and builds the state, seeding the default admin if needed."""
        slots = {}
        for name, key in SLOT_KEYS.items():
            default = {} if name == CLINICAL_DETAILS else []
            slots[key] = self._store.load_json(key, default)
        state = AppState.from_slots(slots)
        if not has_valid_users(slots[config.USERS_KEY]):
            logger.info("No usable user list found. Seeding the default administrator.")
            self._save_collections(state, [USERS])
        logger.info("Loaded %d record(s), %d request(s), %d pending transfer(s).",
                    len(state.records), len(state.requests), len(state.pending_transfers))
        return state

    def _save_collections(self, state, collections):
        """Writes the given collections to the store. Write failures are logged, never raised."""
        for name in collections:
            self._store.save_json(SLOT_KEYS[name], state.slot_payload(name))

    def _apply(self, operation, *args, **kwargs):
        """Runs a workflow step as the current user and persists what it changed.

        Raises:
            HCLogError: Propagated unchanged from the workflow step; nothing is saved.
        """
        actor = self.current_user.username if self.current_user else None
        try:
            outcome = operation(self.state, self.current_user, *args, **kwargs)
        except HCLogError as e:
            logger.info("%s by %s refused: %s (%s)", operation.__name__, actor, type(e).__name__, e.message)
            raise
        self._save_collections(self.state, outcome.changed)
        if outcome.changed:
            logger.info("%s by %s updated %s.", operation.__name__, actor, ", ".join(outcome.changed))
        return outcome

    # Session

    def login(self, username, password):
        """Authenticates a user and sets the current user session.

        Args:
            username (str): Login name, matched regardless of case.
            password (str): Plaintext password, matched exactly.

        Returns:
            User or None: The authenticated user, or None if the credentials are wrong.
        """
        user = self.state.find_user(username)
        if user is not None and user.password == password:
            self.current_user = user
            logger.info("User %s logged in.", user.username)
            return user
        logger.info("Failed login attempt for %r.", username)
        return None

    def logout(self):
        """Logs out the current user by clearing the session."""
        self.current_user = None

    # Loans and records

    def register_loan(self, hc_numbers, destination_service, responsible, responsible_phone_number,
                      request_date, editing_id=None):
        """Registers a direct loan (admin), or edits an existing record when `editing_id` is given.

        Returns:
            Outcome: The created records are in `outcome.created`.
        """
        return self._apply(workflow.register_loan, hc_numbers, destination_service, responsible,
                           responsible_phone_number, request_date, editing_id=editing_id, now=self.clock())

    def delete_record(self, record_id):
        return self._apply(workflow.delete_record, record_id)

    def request_return(self, record_id):
        """Guest step of the return: marks the record pending and notifies the admins."""
        return self._apply(workflow.request_return, record_id, now=self.clock())

    def confirm_return(self, record_id, return_date, receiving_staff_name):
        """Admin step of the return: records the reception date and staff name."""
        return self._apply(workflow.confirm_return, record_id, return_date, receiving_staff_name)

    # Requests

    def submit_request(self, hc_numbers, destination_service):
        """Submits a loan request in the current user's name.

        Returns:
            Outcome: `outcome.info` lists the numbers that had to be left out, if any.
        """
        return self._apply(workflow.submit_request, hc_numbers, destination_service, now=self.clock())

    def approve_request(self, request_id):
        return self._apply(workflow.approve_request, request_id, now=self.clock())

    def reject_request(self, request_id, reason):
        return self._apply(workflow.reject_request, request_id, reason, now=self.clock())

    # Transfers

    def request_transfer(self, record_id, to_service):
        return self._apply(workflow.request_transfer, record_id, to_service, now=self.clock())

    def accept_transfer(self, transfer_id):
        return self._apply(workflow.accept_transfer, transfer_id, now=self.clock())

    def reject_transfer(self, transfer_id):
        return self._apply(workflow.reject_transfer, transfer_id, now=self.clock())

    # Users

    def add_user(self, username, password, role, service=None):
        return self._apply(workflow.add_user, username, password, role, service)

    def delete_user(self, username):
        """Deletes a user together with their open requests and notifications."""
        return self._apply(workflow.delete_user, username)

    def get_all_users(self) -> list:
        return list(self.state.users)

    # Clinical histories

    def get_clinical_details(self, hc_number) -> ClinicalDetails:
        """Returns the stored details for a history number, or empty ones."""
        return self.state.clinical_details.get(hc_number) or ClinicalDetails()

    def save_clinical_details(self, hc_number, antecedents, notes):
        return self._apply(workflow.save_clinical_details, hc_number, antecedents, notes)

    def delete_history(self, hc_number, confirmed=False):
        """Deletes every record and the details of one history number. Needs `confirmed=True`."""
        return self._apply(workflow.delete_history, hc_number, confirmed=confirmed)

    def get_history(self, hc_number) -> list:
        return views.history_for(self.state, hc_number)

    # Notifications

    def open_notifications(self) -> list:
        """Returns the current user's notifications, newest first, and marks them read."""
        notifications = views.user_notifications(self.state, self.current_user)
        self._apply(workflow.mark_notifications_read)
        return notifications

    def get_unread_count(self) -> int:
        return views.unread_count(self.state, self.current_user)

    # Views

    def get_records(self, search='', service_filter='') -> list:
        """Returns the record list visible to the current user, filtered and sorted for display."""
        return views.filtered_records(self.state, self.current_user, search, service_filter)

    def get_visible_requests(self) -> list:
        return views.visible_requests(self.state, self.current_user)

    def get_incoming_transfers(self) -> list:
        return views.incoming_transfers(self.state, self.current_user)

    def get_pending_transfer_record_ids(self) -> set:
        return views.pending_transfer_record_ids(self.state)

    def get_unique_services(self) -> list:
        return views.unique_services(self.state)

    def get_guest_services(self) -> list:
        return views.guest_services(self.state)
