"""
The loan, request, return and transfer rules of HCLog.

Every public function takes the `AppState`, the acting `User` and the
operation's inputs. It first checks the actor's capability, then validates the
inputs against the current state, and only then mutates the collections, so a
raised `HCLogError` always leaves the state exactly as it was. On success it
returns an `Outcome` naming the collections it touched; persisting them is the
caller's job.

The one invariant every state-creating step protects: a clinical history
number has at most one active record (loaned or pending return).
"""
# hclog/workflow.py

from datetime import datetime

from hclog import config
from hclog.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from hclog.models import (
    ClinicalDetails, Notification, PendingTransfer, Record, Request, User,
    NO_PHONE, NOTIFICATION_APPROVAL, NOTIFICATION_REJECTION, ROLE_ADMIN, ROLE_GUEST,
    STATUS_LOANED, STATUS_PENDING_RETURN, STATUS_RETURNED, STATUS_TRANSFERRED,
    epoch_millis, local_datetime_string, request_date_sort_key, split_hc_numbers,
)
from hclog.state import (
    CLINICAL_DETAILS, NOTIFICATIONS, PENDING_TRANSFERS, RECORDS, REQUESTS, USERS, same_service,
)


class Outcome:
    """The result of a successful workflow step.

    Attributes:
        message (str): Confirmation shown to the user.
        changed (list): Names of the state collections that were modified.
        created (list): Entities created by the step, in creation order.
        info (str): Optional secondary notice, e.g. items left out of a partial request.
    """
    def __init__(self, message, changed, created=None, info=None):
        self.message = message
        self.changed = list(changed)
        self.created = list(created or [])
        self.info = info


def _dedupe(items) -> list:
    return list(dict.fromkeys(items))


def _now(now):
    return now or datetime.now()


def _require_user(actor):
    if actor is None:
        raise PermissionDeniedError("Debe iniciar sesión para realizar esta acción.")


def _require_admin(actor):
    _require_user(actor)
    if not actor.is_admin:
        raise PermissionDeniedError("Solo un administrador puede realizar esta acción.")


def _require_guest(actor):
    _require_user(actor)
    if not actor.is_guest or not actor.service:
        raise PermissionDeniedError("Solo un usuario invitado con servicio asignado puede realizar esta acción.")


def _require_own_record(actor, record):
    if not same_service(actor.service, record.destination_service):
        raise PermissionDeniedError(
            f"La H.C. N° {record.hc_number} pertenece al servicio \"{record.destination_service}\", no al suyo."
        )


def _get_record(state, record_id) -> Record:
    record = state.find_record(record_id)
    if record is None:
        raise NotFoundError("El registro ya no existe.")
    return record


def _notify(state, user_id, message, kind, now_ms) -> Notification:
    notification = Notification(
        id=state.new_id(state.notifications, now_ms),
        user_id=user_id,
        message=message,
        timestamp=now_ms,
        type=kind,
    )
    state.notifications.append(notification)
    return notification


# Loans

def register_loan(state, actor, hc_numbers, destination_service, responsible, responsible_phone_number,
                  request_date, editing_id=None, now=None) -> Outcome:
    """Registers a direct loan, or updates an existing record when `editing_id` is given.

    Args:
        hc_numbers (str): Comma-separated clinical history numbers.
        destination_service (str): Service receiving the folders.
        responsible (str): Person taking the folders.
        responsible_phone_number (str): Their phone number.
        request_date (str or datetime): Loan date.
        editing_id (int, optional): Id of the record to update in place.

    Raises:
        PermissionDeniedError: The actor is not an administrator.
        ValidationError: A field is empty, or an edit lists more than one number.
        ConflictError: A listed number is already out (or repeated in the input).
        NotFoundError: `editing_id` does not exist.
    """
    _require_admin(actor)
    if isinstance(request_date, datetime):
        request_date = local_datetime_string(request_date)
    fields = [destination_service, responsible, responsible_phone_number, request_date]
    if any(not (value or '').strip() for value in fields):
        raise ValidationError("Por favor, complete todos los campos del préstamo.")
    hcs = split_hc_numbers(hc_numbers)
    if not hcs:
        raise ValidationError("Por favor, ingrese al menos un número de historia clínica.")

    editing = None
    if editing_id is not None:
        editing = _get_record(state, editing_id)
        if len(hcs) != 1:
            raise ValidationError("Al editar un préstamo solo se puede indicar un número de historia clínica.")

    repeated = _dedupe(hc for i, hc in enumerate(hcs) if hc in hcs[:i])
    if repeated:
        raise ConflictError(
            f"Error: La(s) siguiente(s) historia(s) clínica(s) está(n) repetida(s) en el formulario: {', '.join(repeated)}",
            hc_numbers=repeated,
        )
    active = state.active_hc_numbers(exclude_record_id=editing_id)
    loaned_out = [hc for hc in hcs if hc in active]
    if loaned_out:
        raise ConflictError(
            "Error: La(s) siguiente(s) historia(s) clínica(s) ya se encuentra(n) en estado de préstamo y no "
            f"puede(n) ser registrada(s) de nuevo hasta su devolución: {', '.join(loaned_out)}",
            loaned_out=loaned_out,
        )

    if editing is not None:
        editing.hc_number = hcs[0]
        editing.destination_service = destination_service.strip()
        editing.responsible = responsible.strip()
        editing.responsible_phone_number = responsible_phone_number.strip()
        editing.request_date = request_date
        return Outcome("Préstamo actualizado.", [RECORDS])

    now_ms = epoch_millis(_now(now))
    created = []
    for hc in hcs:
        record = Record(
            id=state.new_id(state.records, now_ms),
            hc_number=hc,
            destination_service=destination_service.strip(),
            responsible=responsible.strip(),
            responsible_phone_number=responsible_phone_number.strip(),
            request_date=request_date,
        )
        state.records.append(record)
        created.append(record)
    return Outcome(f"Préstamo registrado para H.C.: {', '.join(hcs)}.", [RECORDS], created)


def delete_record(state, actor, record_id) -> Outcome:
    """Deletes a single loan record."""
    _require_admin(actor)
    record = _get_record(state, record_id)
    state.records.remove(record)
    return Outcome(f"Registro de la H.C. N° {record.hc_number} eliminado.", [RECORDS])


# Requests

def submit_request(state, actor, hc_numbers, destination_service, now=None) -> Outcome:
    """Creates a loan request for every listed number that is still available.

    Numbers already lent out, or already part of another open request, are left
    out. If none remain the call fails; otherwise a single request is created
    for the available ones and the excluded ones are reported in `Outcome.info`.

    Raises:
        PermissionDeniedError: A guest asks on behalf of another service.
        ValidationError: No numbers or no destination service.
        ConflictError: Every listed number is unavailable.
    """
    _require_user(actor)
    if not (destination_service or '').strip():
        raise ValidationError("Por favor, indique el servicio de destino.")
    if actor.is_guest and not same_service(actor.service, destination_service):
        raise PermissionDeniedError("Solo puede solicitar historias clínicas para su propio servicio.")
    hcs = _dedupe(split_hc_numbers(hc_numbers))
    if not hcs:
        raise ValidationError("Por favor, ingrese al menos un número de historia clínica.")

    active = state.active_hc_numbers()
    requested = state.requested_hc_numbers()
    loaned_out = [hc for hc in hcs if hc in active]
    pending = [hc for hc in hcs if hc in requested]
    unavailable = _dedupe(loaned_out + pending)
    available = [hc for hc in hcs if hc not in unavailable]

    info = None
    if unavailable:
        loaned_message = f"Ya prestada(s): {', '.join(loaned_out)}." if loaned_out else ''
        pending_message = f"Ya en otra solicitud: {', '.join(pending)}." if pending else ''
        info = f"Algunas H.C. no pudieron ser solicitadas. {loaned_message} {pending_message}".strip()
        if not available:
            raise ConflictError(info, hc_numbers=unavailable, loaned_out=loaned_out, pending=pending)

    now_ms = epoch_millis(_now(now))
    request = Request(
        id=state.new_id(state.requests, now_ms),
        hc_numbers=', '.join(available),
        destination_service=destination_service.strip(),
        requester_name=actor.username,
        request_timestamp=now_ms,
    )
    state.requests.append(request)
    if unavailable:
        message = f"Solicitud enviada para las H.C. disponibles: {', '.join(available)}."
    else:
        message = "Solicitud enviada para aprobación."
    return Outcome(message, [REQUESTS], [request], info=info)


def _get_request(state, request_id) -> Request:
    request = state.find_request(request_id)
    if request is None:
        raise NotFoundError("La solicitud ya no existe.")
    return request


def approve_request(state, actor, request_id, now=None) -> Outcome:
    """Turns a pending request into one loaned record per requested number.

    Raises:
        PermissionDeniedError: Not an administrator, or approving one's own request.
        ConflictError: A requested number was lent out since the request was made.
    """
    _require_admin(actor)
    request = _get_request(state, request_id)
    if request.requester_name.lower() == actor.username.lower():
        raise PermissionDeniedError("No puede aprobar sus propias solicitudes.")

    hcs = _dedupe(request.hc_number_list)
    active = state.active_hc_numbers()
    loaned_out = [hc for hc in hcs if hc in active]
    if loaned_out:
        raise ConflictError(
            "No se puede aprobar la solicitud. La(s) siguiente(s) historia(s) clínica(s) ya ha(n) sido "
            f"prestada(s): {', '.join(loaned_out)}. Por favor, rechace esta solicitud o espere su devolución.",
            loaned_out=loaned_out,
        )

    moment = _now(now)
    now_ms = epoch_millis(moment)
    created = []
    for hc in hcs:
        record = Record(
            id=state.new_id(state.records, now_ms),
            hc_number=hc,
            destination_service=request.destination_service,
            responsible=request.requester_name,
            responsible_phone_number=NO_PHONE,
            request_date=local_datetime_string(moment),
        )
        state.records.append(record)
        created.append(record)
    state.records.sort(key=request_date_sort_key, reverse=True)
    state.requests.remove(request)
    return Outcome(f"Solicitud aprobada para H.C.: {', '.join(hcs)}.", [RECORDS, REQUESTS], created)


def reject_request(state, actor, request_id, reason, now=None) -> Outcome:
    """Deletes a pending request and notifies the requester of the reason."""
    _require_admin(actor)
    request = _get_request(state, request_id)
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError("Por favor, ingrese el motivo del rechazo.")
    notification = _notify(
        state,
        request.requester_name,
        f"Su solicitud para H.C. \"{request.hc_numbers}\" ha sido rechazada. Motivo: {reason}",
        NOTIFICATION_REJECTION,
        epoch_millis(_now(now)),
    )
    state.requests.remove(request)
    return Outcome("Solicitud rechazada. Se ha notificado al solicitante.", [REQUESTS, NOTIFICATIONS], [notification])


# Returns

def request_return(state, actor, record_id, now=None) -> Outcome:
    """Marks a loaned record of the guest's service as pending return and alerts every admin."""
    _require_guest(actor)
    record = _get_record(state, record_id)
    _require_own_record(actor, record)
    if record.status != STATUS_LOANED:
        raise ConflictError(f"La H.C. N° {record.hc_number} no está en estado de préstamo.", hc_numbers=[record.hc_number])

    record.status = STATUS_PENDING_RETURN
    now_ms = epoch_millis(_now(now))
    created = [
        _notify(
            state,
            admin.username,
            f"El servicio \"{record.destination_service}\" ha solicitado la devolución de la H.C. "
            f"N° {record.hc_number}. Por favor, confirme la recepción.",
            NOTIFICATION_APPROVAL,
            now_ms,
        )
        for admin in state.admins()
    ]
    return Outcome(
        "Solicitud de devolución enviada con éxito. El administrador será notificado para confirmar la recepción.",
        [RECORDS, NOTIFICATIONS],
        created,
    )


def confirm_return(state, actor, record_id, return_date, receiving_staff_name) -> Outcome:
    """Records the physical reception of a folder. Both fields are required."""
    _require_admin(actor)
    record = _get_record(state, record_id)
    if isinstance(return_date, datetime):
        return_date = local_datetime_string(return_date)
    staff = (receiving_staff_name or '').strip()
    if not (return_date or '').strip() or not staff:
        raise ValidationError("Por favor, complete todos los campos.")

    record.status = STATUS_RETURNED
    record.return_date = return_date
    record.receiving_staff_name = staff
    return Outcome(f"Devolución de la H.C. N° {record.hc_number} registrada.", [RECORDS])


# Transfers

def request_transfer(state, actor, record_id, to_service, now=None) -> Outcome:
    """Asks another service to take over a loaned folder. The record itself is untouched."""
    _require_guest(actor)
    record = _get_record(state, record_id)
    _require_own_record(actor, record)
    to_service = (to_service or '').strip()
    if not to_service:
        raise ValidationError("Por favor, seleccione el servicio de destino.")
    if same_service(to_service, record.destination_service):
        raise ValidationError("El servicio de destino debe ser distinto al servicio actual.")
    if record.status != STATUS_LOANED:
        raise ConflictError(f"La H.C. N° {record.hc_number} no está en estado de préstamo.", hc_numbers=[record.hc_number])
    if any(t.record_id == record.id for t in state.pending_transfers):
        raise ConflictError(f"La H.C. N° {record.hc_number} ya tiene una transferencia pendiente.", hc_numbers=[record.hc_number])

    now_ms = epoch_millis(_now(now))
    transfer = PendingTransfer(
        id=state.new_id(state.pending_transfers, now_ms),
        record_id=record.id,
        hc_number=record.hc_number,
        from_service=record.destination_service,
        to_service=to_service,
        requester_name=actor.username,
        request_timestamp=now_ms,
    )
    state.pending_transfers.append(transfer)
    return Outcome(
        "Solicitud de transferencia enviada. El servicio de destino debe aceptarla.",
        [PENDING_TRANSFERS],
        [transfer],
    )


def _get_incoming_transfer(state, actor, transfer_id) -> PendingTransfer:
    _require_guest(actor)
    transfer = state.find_transfer(transfer_id)
    if transfer is None:
        raise NotFoundError("La transferencia ya no existe.")
    if not same_service(actor.service, transfer.to_service):
        raise PermissionDeniedError("Solo el servicio de destino puede resolver esta transferencia.")
    return transfer


def accept_transfer(state, actor, transfer_id, now=None) -> Outcome:
    """Closes the source record as transferred and opens a new loan for the destination service."""
    transfer = _get_incoming_transfer(state, actor, transfer_id)
    source = state.find_record(transfer.record_id)
    if source is None:
        raise NotFoundError(f"El registro original de la H.C. N° {transfer.hc_number} ya no existe.")
    if source.status != STATUS_LOANED:
        raise ConflictError(
            f"La H.C. N° {transfer.hc_number} ya no está en estado de préstamo y no puede ser transferida.",
            hc_numbers=[transfer.hc_number],
        )
    if transfer.hc_number in state.active_hc_numbers(exclude_record_id=source.id):
        raise ConflictError(
            f"La H.C. N° {transfer.hc_number} ya se encuentra prestada a otro servicio.",
            loaned_out=[transfer.hc_number],
        )

    moment = _now(now)
    stamp = local_datetime_string(moment)
    now_ms = epoch_millis(moment)
    source.status = STATUS_TRANSFERRED
    source.return_date = stamp
    source.receiving_staff_name = f"Transferido a {transfer.to_service}"
    record = Record(
        id=state.new_id(state.records, now_ms),
        hc_number=transfer.hc_number,
        destination_service=transfer.to_service,
        responsible=actor.username,
        responsible_phone_number=NO_PHONE,
        request_date=stamp,
    )
    state.records.append(record)
    state.pending_transfers.remove(transfer)
    _notify(
        state,
        transfer.requester_name,
        f"La transferencia de H.C. \"{transfer.hc_number}\" a {transfer.to_service} fue aceptada.",
        NOTIFICATION_APPROVAL,
        now_ms,
    )
    return Outcome("Transferencia aceptada.", [RECORDS, PENDING_TRANSFERS, NOTIFICATIONS], [record])


def reject_transfer(state, actor, transfer_id, now=None) -> Outcome:
    """Drops a pending transfer and tells the requester."""
    transfer = _get_incoming_transfer(state, actor, transfer_id)
    notification = _notify(
        state,
        transfer.requester_name,
        f"La transferencia de H.C. \"{transfer.hc_number}\" a {transfer.to_service} fue rechazada.",
        NOTIFICATION_REJECTION,
        epoch_millis(_now(now)),
    )
    state.pending_transfers.remove(transfer)
    return Outcome(
        "Transferencia rechazada. Se ha notificado al solicitante.",
        [PENDING_TRANSFERS, NOTIFICATIONS],
        [notification],
    )


# Users

def add_user(state, actor, username, password, role, service=None) -> Outcome:
    """Creates an account. Guests must be bound to a service."""
    _require_admin(actor)
    username = (username or '').strip()
    if not username or not (password or '').strip():
        raise ValidationError("El nombre de usuario y la contraseña no pueden estar vacíos.")
    if role not in (ROLE_ADMIN, ROLE_GUEST):
        raise ValidationError(f"Rol desconocido: {role}.")
    if state.find_user(username) is not None:
        raise ConflictError("El nombre de usuario ya existe.", hc_numbers=[])
    service = (service or '').strip() or None
    if role == ROLE_GUEST and not service:
        raise ValidationError("Debe asignar un servicio al usuario invitado.")

    user = User(username, password, role, service if role == ROLE_GUEST else None)
    state.users.append(user)
    return Outcome(f"Usuario \"{username}\" agregado con éxito.", [USERS], [user])


def delete_user(state, actor, username) -> Outcome:
    """Deletes an account with its open requests and its notifications. Records are kept."""
    _require_admin(actor)
    wanted = (username or '').strip().lower()
    if wanted == config.DEFAULT_ADMIN_USERNAME.lower():
        raise PermissionDeniedError("No se puede eliminar al administrador por defecto.")
    if wanted == actor.username.lower():
        raise PermissionDeniedError("No puede eliminar su propia cuenta de usuario mientras está en una sesión activa.")
    user = state.find_user(username)
    if user is None:
        raise NotFoundError(f"El usuario \"{username}\" no existe.")

    state.users.remove(user)
    state.requests = [r for r in state.requests if r.requester_name != user.username]
    state.notifications = [n for n in state.notifications if n.user_id != user.username]
    return Outcome(f"Usuario \"{user.username}\" eliminado con éxito.", [USERS, REQUESTS, NOTIFICATIONS])


# Clinical histories

def save_clinical_details(state, actor, hc_number, antecedents, notes) -> Outcome:
    _require_admin(actor)
    hc_number = (hc_number or '').strip()
    if not hc_number:
        raise ValidationError("Por favor, indique el número de historia clínica.")
    state.clinical_details[hc_number] = ClinicalDetails(antecedents or '', notes or '')
    return Outcome("Detalles guardados.", [CLINICAL_DETAILS])


def delete_history(state, actor, hc_number, confirmed=False) -> Outcome:
    """Erases every loan cycle and the clinical details of one history number.

    Irreversible, so the caller must pass `confirmed=True` once the user has
    explicitly agreed.
    """
    _require_admin(actor)
    if not confirmed:
        raise ValidationError("Debe confirmar la eliminación de la historia clínica completa.")
    hc_number = (hc_number or '').strip()
    matching = [r for r in state.records if r.hc_number == hc_number]
    if not matching and hc_number not in state.clinical_details:
        raise NotFoundError(f"No existe la H.C. N° {hc_number}.")

    state.records = [r for r in state.records if r.hc_number != hc_number]
    state.clinical_details.pop(hc_number, None)
    return Outcome(
        f"Historia clínica N° {hc_number} eliminada ({len(matching)} registro(s)).",
        [RECORDS, CLINICAL_DETAILS],
    )


# Notifications

def mark_notifications_read(state, actor) -> Outcome:
    """Marks all of the actor's notifications as read (the panel was opened)."""
    _require_user(actor)
    unread = [n for n in state.notifications if n.user_id == actor.username and not n.is_read]
    for notification in unread:
        notification.is_read = True
    return Outcome("", [NOTIFICATIONS] if unread else [])
