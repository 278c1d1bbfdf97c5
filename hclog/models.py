"""
This module defines the data models for the HCLog application.

These classes structure the data held in memory by the `AppState` aggregate and
mirrored to the local store. Each model converts to and from the camelCase
dictionaries used in the stored snapshots.
"""
# hclog/models.py

from datetime import datetime
import time

ROLE_ADMIN = 'admin'
ROLE_GUEST = 'invitado'

STATUS_LOANED = 'Prestado'
STATUS_RETURNED = 'Devuelto'
STATUS_PENDING_RETURN = 'Pendiente de Devolución'
STATUS_TRANSFERRED = 'Transferido'

# A folder is "active" (physically out with a service) in these states.
ACTIVE_STATUSES = (STATUS_LOANED, STATUS_PENDING_RETURN)

NOTIFICATION_REJECTION = 'rejection'
NOTIFICATION_APPROVAL = 'approval'

DATETIME_FORMAT = '%Y-%m-%dT%H:%M'
NO_PHONE = 'N/A'


def local_datetime_string(moment=None) -> str:
    """Formats a datetime as the `YYYY-MM-DDTHH:MM` string stored on records."""
    return (moment or datetime.now()).strftime(DATETIME_FORMAT)


def epoch_millis(moment=None) -> int:
    """Returns the epoch timestamp in milliseconds for `moment` (or now)."""
    if moment is None:
        return int(time.time() * 1000)
    return int(moment.timestamp() * 1000)


def split_hc_numbers(raw: str) -> list:
    """Splits a comma-separated list of clinical history numbers, dropping blanks."""
    return [hc.strip() for hc in (raw or '').split(',') if hc.strip()]


class User:
    """Represents an account allowed to use the tool.

    Attributes:
        username (str): Login name, unique regardless of case.
        password (str): Plaintext password.
        role (str): 'admin' or 'invitado'.
        service (str): The hospital service a guest belongs to; None for admins.
    """
    def __init__(self, username, password, role, service=None):
        self.username = username
        self.password = password
        self.role = role
        self.service = service

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_guest(self) -> bool:
        return self.role == ROLE_GUEST

    def to_dict(self) -> dict:
        data = {'username': self.username, 'password': self.password, 'role': self.role}
        if self.service:
            data['service'] = self.service
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'User':
        return cls(data['username'], data.get('password', ''), data.get('role', ROLE_GUEST), data.get('service'))


class Record:
    """Represents one loan cycle of a physical clinical history folder.

    Several records may share an `hc_number` over time; at most one of them is
    active (loaned or pending return) at any moment.

    Attributes:
        id (int): Unique identifier, derived from the creation time.
        hc_number (str): The clinical history number.
        destination_service (str): The service holding the folder.
        responsible (str): The person who took the folder.
        responsible_phone_number (str): Contact number of the responsible person.
        request_date (str): Loan date, `YYYY-MM-DDTHH:MM`.
        status (str): One of the STATUS_* constants.
        return_date (str): Return date, or None while the folder is out.
        receiving_staff_name (str): Who received the folder back, or None.
    """
    def __init__(self, id, hc_number, destination_service, responsible, responsible_phone_number,
                 request_date, status=STATUS_LOANED, return_date=None, receiving_staff_name=None):
        self.id = id
        self.hc_number = hc_number
        self.destination_service = destination_service
        self.responsible = responsible
        self.responsible_phone_number = responsible_phone_number
        self.request_date = request_date
        self.status = status
        self.return_date = return_date
        self.receiving_staff_name = receiving_staff_name

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'hcNumber': self.hc_number,
            'destinationService': self.destination_service,
            'responsible': self.responsible,
            'responsiblePhoneNumber': self.responsible_phone_number,
            'requestDate': self.request_date,
            'status': self.status,
            'returnDate': self.return_date,
            'receivingStaffName': self.receiving_staff_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Record':
        return cls(
            id=data['id'],
            hc_number=str(data['hcNumber']),
            destination_service=data.get('destinationService', ''),
            responsible=data.get('responsible', ''),
            responsible_phone_number=data.get('responsiblePhoneNumber', ''),
            request_date=data.get('requestDate', ''),
            status=data.get('status', STATUS_LOANED),
            return_date=data.get('returnDate'),
            receiving_staff_name=data.get('receivingStaffName'),
        )


class ClinicalDetails:
    """Free-text background kept per clinical history number, across loan cycles."""
    def __init__(self, antecedents='', notes=''):
        self.antecedents = antecedents
        self.notes = notes

    def to_dict(self) -> dict:
        return {'antecedents': self.antecedents, 'notes': self.notes}

    @classmethod
    def from_dict(cls, data: dict) -> 'ClinicalDetails':
        return cls(data.get('antecedents', ''), data.get('notes', ''))


class Request:
    """A loan request awaiting an administrator's decision.

    Attributes:
        id (int): Unique identifier.
        hc_numbers (str): Requested clinical history numbers joined with ", ".
        destination_service (str): The service the folders should go to.
        requester_name (str): Username of the requester.
        request_timestamp (int): Creation time in epoch milliseconds.
    """
    def __init__(self, id, hc_numbers, destination_service, requester_name, request_timestamp):
        self.id = id
        self.hc_numbers = hc_numbers
        self.destination_service = destination_service
        self.requester_name = requester_name
        self.request_timestamp = request_timestamp

    @property
    def hc_number_list(self) -> list:
        return split_hc_numbers(self.hc_numbers)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'hcNumbers': self.hc_numbers,
            'destinationService': self.destination_service,
            'requesterName': self.requester_name,
            'requestTimestamp': self.request_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Request':
        return cls(data['id'], data.get('hcNumbers', ''), data.get('destinationService', ''),
                   data.get('requesterName', ''), data.get('requestTimestamp', 0))


class PendingTransfer:
    """A request to move a loaned folder from one service to another.

    Attributes:
        id (int): Unique identifier.
        record_id (int): The record being moved.
        hc_number (str): Clinical history number of that record.
        from_service (str): Current holder.
        to_service (str): Service that must accept the transfer.
        requester_name (str): Username of the guest who asked for it.
        request_timestamp (int): Creation time in epoch milliseconds.
    """
    def __init__(self, id, record_id, hc_number, from_service, to_service, requester_name, request_timestamp):
        self.id = id
        self.record_id = record_id
        self.hc_number = hc_number
        self.from_service = from_service
        self.to_service = to_service
        self.requester_name = requester_name
        self.request_timestamp = request_timestamp

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'recordId': self.record_id,
            'hcNumber': self.hc_number,
            'fromService': self.from_service,
            'toService': self.to_service,
            'requesterName': self.requester_name,
            'requestTimestamp': self.request_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PendingTransfer':
        return cls(data['id'], data['recordId'], str(data.get('hcNumber', '')), data.get('fromService', ''),
                   data.get('toService', ''), data.get('requesterName', ''), data.get('requestTimestamp', 0))


class Notification:
    """A message addressed to one user, produced as a side effect of a workflow step.

    Attributes:
        id (int): Unique identifier.
        user_id (str): Username of the recipient.
        message (str): Text shown in the notifications panel.
        timestamp (int): Creation time in epoch milliseconds.
        is_read (bool): Set once the recipient opens the panel.
        type (str): 'rejection' or 'approval'.
    """
    def __init__(self, id, user_id, message, timestamp, type, is_read=False):
        self.id = id
        self.user_id = user_id
        self.message = message
        self.timestamp = timestamp
        self.type = type
        self.is_read = is_read

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'userId': self.user_id,
            'message': self.message,
            'timestamp': self.timestamp,
            'isRead': self.is_read,
            'type': self.type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Notification':
        return cls(data['id'], data.get('userId', ''), data.get('message', ''), data.get('timestamp', 0),
                   data.get('type', NOTIFICATION_APPROVAL), data.get('isRead', False))


def parse_local_datetime(value):
    """Parses a stored date string, returning None when it is empty or malformed."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None


def request_date_sort_key(record) -> datetime:
    """Sort key placing unparsable loan dates last in a newest-first ordering."""
    parsed = parse_local_datetime(record.request_date)
    if parsed is None:
        return datetime.min
    # Compare naive and aware values on the same footing.
    return parsed.replace(tzinfo=None)
