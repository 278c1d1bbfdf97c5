"""
This module defines the graphical user interface (GUI) for the HCLog application using Streamlit.

It renders the login form and the single-page loan control view: the loan or
request form, pending requests and transfers, the record table with its
per-record actions, the clinical history panel, user management, the
notifications panel and the export buttons.

Every action goes through the `HCLogService`; workflow errors are caught here
and shown to the user, never raised further.
"""
# hclog/gui.py

import datetime
import logging

import streamlit as st

from hclog import config
from hclog.errors import ConflictError, HCLogError, ValidationError
from hclog.export import EMPTY_CELL, export_records_xlsx, format_datetime, records_dataframe
from hclog.models import (
    ROLE_ADMIN, ROLE_GUEST, STATUS_LOANED, STATUS_PENDING_RETURN, STATUS_RETURNED, parse_local_datetime,
)
from hclog.state import same_service

logger = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

STATUS_BADGES = {
    STATUS_LOANED: "🟡",
    STATUS_PENDING_RETURN: "🟠",
    STATUS_RETURNED: "🟢",
}


def _flash(kind, message):
    """Queues a message to be shown after the next rerun."""
    st.session_state.setdefault('flash', []).append((kind, message))


def _show_flash():
    for kind, message in st.session_state.pop('flash', []):
        getattr(st, kind)(message)


def _run_action(action, *args, clear_on_success=(), **kwargs):
    """Calls a service method and reports its outcome to the user.

    Successful outcomes are queued as flash messages and the app is rerun so
    every panel reflects the new state. Workflow errors are shown in place.

    Args:
        clear_on_success (tuple): Session state keys reset to None once the
            action succeeds, such as the id of an open edit or reject form.
            A refused action leaves them set so the form stays open.

    Returns:
        Outcome or None: The outcome, or None if the action was refused.
    """
    try:
        outcome = action(*args, **kwargs)
    except HCLogError as e:
        if isinstance(e, (ValidationError, ConflictError)):
            st.error(e.message)
        else:
            st.warning(e.message)
        return None
    for key in clear_on_success:
        st.session_state[key] = None
    if outcome.message:
        _flash("success", outcome.message)
    if outcome.info:
        _flash("info", outcome.info)
    st.rerun()
    return outcome


def _combine(date_value, time_value):
    """Joins the date and time pickers into one datetime, or None if either is empty."""
    if not date_value or time_value is None:
        return None
    return datetime.datetime.combine(date_value, time_value)


def _logout(service):
    service.logout()
    for key in list(st.session_state.keys()):
        del st.session_state[key]
    st.session_state.current_user = None


# Authentication

def show_login_form(service):
    """Displays the login form and handles user authentication.

    Args:
        service: The main application service instance.
    """
    col1, col2, col3 = st.columns([1, 2, 1])
    with col2:
        st.markdown(f"<h1 style='text-align: center;'>{config.APP_TITLE}</h1>", unsafe_allow_html=True)
        st.markdown(f"<p style='text-align: center;'>{config.HOSPITAL_NAME}</p>", unsafe_allow_html=True)
        with st.form("login_form"):
            username = st.text_input("Usuario")
            password = st.text_input("Contraseña", type="password")
            submitted = st.form_submit_button("Iniciar Sesión", use_container_width=True)

            if submitted:
                if not username or not password:
                    st.error("Ingrese su usuario y contraseña.")
                else:
                    user = service.login(username, password)
                    if user:
                        st.session_state.current_user = user
                        st.rerun()
                    else:
                        st.error("Usuario o contraseña incorrectos.")


# Main Application UI

def show_main_app(service):
    """
    Renders the loan control page for the logged-in user.

    Admins get the direct loan form, request approval and user management;
    guests get the request form and the actions on their own service's
    records. Both see the record table, the notifications and the exports.

    Args:
        service: The main application service instance.
    """
    user = st.session_state.current_user
    service.current_user = user

    _render_header(service, user)
    _show_flash()

    if st.session_state.get('show_notifications'):
        _render_notifications(service)
    if user.is_admin and st.session_state.get('show_user_management'):
        _render_user_management(service, user)

    if user.is_admin:
        _render_loan_form(service)
    else:
        _render_request_form(service, user)

    _render_pending_requests(service, user)
    if user.is_guest:
        _render_incoming_transfers(service)

    records = _render_records(service, user)
    if st.session_state.get('viewing_hc'):
        _render_history(service, user, st.session_state.viewing_hc)
    _render_exports(records)

    st.divider()
    st.caption(f"© {datetime.date.today().year} {config.HOSPITAL_NAME} - {config.APP_TITLE}")


def _render_header(service, user):
    col1, col2, col3, col4 = st.columns([4, 1, 1, 1])
    with col1:
        st.markdown(f"## {config.APP_TITLE}")
        role_label = "Administrador" if user.is_admin else f"Invitado · {user.service}"
        st.caption(f"{config.HOSPITAL_NAME} · {user.username} ({role_label})")
    with col2:
        unread = service.get_unread_count()
        label = f"🔔 Notificaciones ({unread})" if unread else "🔔 Notificaciones"
        if st.button(label, key="toggle_notifications", use_container_width=True):
            st.session_state.show_notifications = not st.session_state.get('show_notifications', False)
            st.rerun()
    with col3:
        if user.is_admin and st.button("👥 Usuarios", key="toggle_users", use_container_width=True):
            st.session_state.show_user_management = not st.session_state.get('show_user_management', False)
            st.rerun()
    with col4:
        if st.button("Cerrar Sesión", key="logout_btn", use_container_width=True):
            _logout(service)
            st.rerun()
    st.divider()


def _render_notifications(service):
    """Lists the user's notifications, newest first. Opening the panel marks them read."""
    st.subheader("Notificaciones")
    notifications = service.open_notifications()
    if not notifications:
        st.info("No tiene notificaciones.")
    for notification in notifications:
        stamp = datetime.datetime.fromtimestamp(notification.timestamp / 1000)
        icon = "❌" if notification.type == 'rejection' else "✅"
        st.markdown(f"{icon} {notification.message}")
        st.caption(format_datetime(stamp))
    st.divider()


def _render_user_management(service, user):
    """Admin panel listing every account, with the create form and deletion."""
    st.subheader("Gestión de Usuarios")
    for account in service.get_all_users():
        col1, col2 = st.columns([4, 1])
        role_label = "Administrador" if account.is_admin else f"Invitado · {account.service}"
        col1.write(f"**{account.username}** ({role_label})")
        is_protected = (account.username.lower() == config.DEFAULT_ADMIN_USERNAME
                        or account.username.lower() == user.username.lower())
        if col2.button("Eliminar", key=f"delete_user_{account.username}", disabled=is_protected):
            st.session_state.confirm_delete_user = account.username
            st.rerun()

    pending_delete = st.session_state.get('confirm_delete_user')
    if pending_delete:
        st.warning(f"¿Está seguro de que desea eliminar al usuario \"{pending_delete}\"? "
                   "También se eliminarán sus solicitudes y notificaciones.")
        c1, c2 = st.columns(2)
        if c1.button("Confirmar eliminación", key="confirm_delete_user_btn", type="primary"):
            _run_action(service.delete_user, pending_delete, clear_on_success=('confirm_delete_user',))
        if c2.button("Cancelar", key="cancel_delete_user_btn"):
            st.session_state.confirm_delete_user = None
            st.rerun()

    with st.form("create_user_form", clear_on_submit=True):
        st.markdown("##### Agregar Usuario")
        new_username = st.text_input("Nuevo usuario")
        new_password = st.text_input("Contraseña del usuario", type="password")
        new_role = st.selectbox("Rol", [ROLE_GUEST, ROLE_ADMIN],
                                format_func=lambda r: "Invitado" if r == ROLE_GUEST else "Administrador")
        new_service = st.text_input("Servicio (solo invitados)")
        if st.form_submit_button("Agregar Usuario"):
            _run_action(service.add_user, new_username, new_password, new_role, new_service)
    st.divider()


def _render_loan_form(service):
    """Admin form for registering a direct loan, or editing the selected record."""
    editing_id = st.session_state.get('editing_record_id')
    editing = service.state.find_record(editing_id) if editing_id else None
    if editing_id and editing is None:
        st.session_state.editing_record_id = None
        editing_id = None

    st.subheader("Editar Préstamo" if editing else "Registrar Préstamo")
    default_moment = datetime.datetime.now()
    if editing:
        parsed = parse_local_datetime(editing.request_date)
        default_moment = parsed or default_moment

    with st.form("loan_form", clear_on_submit=not editing):
        hc_numbers = st.text_input(
            "N° de Historia Clínica",
            value=editing.hc_number if editing else "",
            help="Puede registrar varias historias separadas por comas.",
        )
        col1, col2 = st.columns(2)
        destination = col1.text_input("Servicio de Destino", value=editing.destination_service if editing else "")
        responsible = col2.text_input("Responsable", value=editing.responsible if editing else "")
        phone = col1.text_input("Celular", value=editing.responsible_phone_number if editing else "")
        loan_date = col2.date_input("Fecha de Préstamo", value=default_moment.date())
        loan_time = col2.time_input("Hora de Préstamo", value=default_moment.time().replace(second=0, microsecond=0))
        submitted = st.form_submit_button("Guardar Cambios" if editing else "Registrar Préstamo")
        if submitted:
            _run_action(service.register_loan, hc_numbers, destination, responsible, phone,
                        _combine(loan_date, loan_time), editing_id=editing_id,
                        clear_on_success=('editing_record_id',))

    if editing and st.button("Cancelar edición", key="cancel_edit_btn"):
        st.session_state.editing_record_id = None
        st.rerun()
    st.divider()


def _render_request_form(service, user):
    """Guest form for asking the archive to lend folders to their service."""
    st.subheader("Solicitar Historias Clínicas")
    with st.form("request_form", clear_on_submit=True):
        hc_numbers = st.text_input("N° de Historia Clínica", help="Separe varias historias con comas.")
        st.text_input("Servicio de Destino", value=user.service or "", disabled=True)
        if st.form_submit_button("Enviar Solicitud"):
            _run_action(service.submit_request, hc_numbers, user.service)
    st.divider()


def _render_pending_requests(service, user):
    requests = service.get_visible_requests()
    if not requests:
        return
    st.subheader(f"Solicitudes Pendientes ({len(requests)})")
    for request in requests:
        stamp = format_datetime(datetime.datetime.fromtimestamp(request.request_timestamp / 1000))
        with st.expander(f"H.C. {request.hc_numbers} → {request.destination_service}"):
            st.write(f"**Solicitante:** {request.requester_name}")
            st.caption(stamp)
            if not user.is_admin:
                st.info("En espera de aprobación del administrador.")
                continue
            is_own = request.requester_name.lower() == user.username.lower()
            c1, c2 = st.columns(2)
            if c1.button("Aprobar", key=f"approve_{request.id}", type="primary", disabled=is_own):
                _run_action(service.approve_request, request.id)
            if c2.button("Rechazar", key=f"reject_{request.id}"):
                st.session_state.rejecting_request_id = request.id
                st.rerun()
            if st.session_state.get('rejecting_request_id') == request.id:
                with st.form(key=f"reject_form_{request.id}"):
                    reason = st.text_area("Motivo del rechazo", key=f"reject_reason_{request.id}")
                    if st.form_submit_button("Confirmar rechazo"):
                        _run_action(service.reject_request, request.id, reason,
                                    clear_on_success=('rejecting_request_id',))
    st.divider()


def _render_incoming_transfers(service):
    transfers = service.get_incoming_transfers()
    if not transfers:
        return
    st.subheader(f"Transferencias Entrantes ({len(transfers)})")
    for transfer in transfers:
        col1, col2, col3 = st.columns([4, 1, 1])
        col1.write(f"H.C. **{transfer.hc_number}** desde {transfer.from_service} (solicitado por {transfer.requester_name})")
        if col2.button("Aceptar", key=f"accept_transfer_{transfer.id}", type="primary"):
            _run_action(service.accept_transfer, transfer.id)
        if col3.button("Rechazar", key=f"reject_transfer_{transfer.id}"):
            _run_action(service.reject_transfer, transfer.id)
    st.divider()


def _render_records(service, user):
    """Renders the record table with search, filter and the per-record actions.

    Returns:
        list: The filtered records, reused by the exports.
    """
    st.subheader("Registro de Préstamos")
    col1, col2 = st.columns([3, 1])
    search = col1.text_input("Buscar", placeholder="N° H.C., servicio, responsable o estado")
    service_filter = ""
    if user.is_admin:
        options = [""] + service.get_unique_services()
        service_filter = col2.selectbox("Servicio", options, format_func=lambda s: s or "Todos")

    records = service.get_records(search, service_filter)
    if not records:
        st.info("No hay registros que coincidan con los filtros.")
        return records

    st.dataframe(records_dataframe(records), use_container_width=True, hide_index=True)

    pending_ids = service.get_pending_transfer_record_ids()
    transfer_targets = service.get_guest_services()
    for record in records:
        badge = STATUS_BADGES.get(record.status, "⚪")
        title = f"{badge} H.C. {record.hc_number} · {record.destination_service} · {record.status}"
        with st.expander(title):
            st.write(f"**Responsable:** {record.responsible} ({record.responsible_phone_number})")
            st.write(f"**Préstamo:** {format_datetime(record.request_date)}")
            if not record.is_active:
                staff = record.receiving_staff_name if record.status == STATUS_RETURNED else EMPTY_CELL
                st.write(f"**Devolución:** {format_datetime(record.return_date)} · {staff}")
            if st.button("Ver historial", key=f"history_{record.id}"):
                st.session_state.viewing_hc = record.hc_number
                st.rerun()
            if user.is_admin:
                _render_admin_record_actions(service, record)
            else:
                _render_guest_record_actions(service, record, record.id in pending_ids, transfer_targets)
    return records


def _render_admin_record_actions(service, record):
    c1, c2, c3 = st.columns(3)
    if record.is_active:
        if c1.button("Confirmar devolución", key=f"return_{record.id}", type="primary"):
            st.session_state.confirming_return_id = record.id
            st.rerun()
    if c2.button("Editar", key=f"edit_{record.id}"):
        st.session_state.editing_record_id = record.id
        st.rerun()
    if c3.button("Eliminar", key=f"delete_{record.id}"):
        st.session_state.confirm_delete_record_id = record.id
        st.rerun()

    if st.session_state.get('confirm_delete_record_id') == record.id:
        st.warning(f"¿Está seguro de que desea eliminar este registro de la H.C. N° {record.hc_number}?")
        d1, d2 = st.columns(2)
        if d1.button("Confirmar eliminación", key=f"confirm_delete_{record.id}", type="primary"):
            _run_action(service.delete_record, record.id, clear_on_success=('confirm_delete_record_id',))
        if d2.button("Cancelar", key=f"cancel_delete_{record.id}"):
            st.session_state.confirm_delete_record_id = None
            st.rerun()

    if st.session_state.get('confirming_return_id') == record.id:
        with st.form(key=f"return_form_{record.id}"):
            now = datetime.datetime.now()
            return_date = st.date_input("Fecha de Devolución", value=now.date())
            return_time = st.time_input("Hora de Devolución", value=now.time().replace(second=0, microsecond=0))
            staff = st.text_input("Recepcionado por")
            if st.form_submit_button("Registrar devolución"):
                _run_action(service.confirm_return, record.id, _combine(return_date, return_time), staff,
                            clear_on_success=('confirming_return_id',))


def _render_guest_record_actions(service, record, transfer_pending, transfer_targets):
    if record.status != STATUS_LOANED:
        return
    if transfer_pending:
        st.info("Transf. Pendiente")
        return
    c1, c2 = st.columns(2)
    if c1.button("Solicitar devolución", key=f"request_return_{record.id}"):
        _run_action(service.request_return, record.id)
    targets = [s for s in transfer_targets if not same_service(s, record.destination_service)]
    with c2.form(key=f"transfer_form_{record.id}"):
        to_service = st.selectbox("Transferir a", [""] + targets, key=f"transfer_to_{record.id}",
                                  format_func=lambda s: s or "Seleccione un servicio")
        if st.form_submit_button("Solicitar transferencia"):
            _run_action(service.request_transfer, record.id, to_service)


def _render_history(service, user, hc_number):
    """Shows every loan cycle of one history number and, for admins, its clinical details."""
    st.divider()
    col1, col2 = st.columns([5, 1])
    col1.subheader(f"Historial de la H.C. N° {hc_number}")
    if col2.button("Cerrar", key="close_history"):
        st.session_state.viewing_hc = None
        st.rerun()

    movements = service.get_history(hc_number)
    if movements:
        for record in movements:
            st.markdown(f"- **{format_datetime(record.request_date)}** · {record.destination_service} · "
                        f"{record.responsible} · {record.status}")
    else:
        st.info("No hay movimientos registrados para esta historia clínica.")

    details = service.get_clinical_details(hc_number)
    if not user.is_admin:
        if details.antecedents or details.notes:
            st.write(f"**Antecedentes:** {details.antecedents or EMPTY_CELL}")
            st.write(f"**Notas:** {details.notes or EMPTY_CELL}")
        return

    with st.form(key=f"details_form_{hc_number}"):
        antecedents = st.text_area("Antecedentes", value=details.antecedents)
        notes = st.text_area("Notas", value=details.notes)
        if st.form_submit_button("Guardar detalles"):
            _run_action(service.save_clinical_details, hc_number, antecedents, notes)

    st.error("Zona de peligro")
    st.write("Eliminar la historia clínica borra todos sus préstamos y detalles. Esta acción no se puede deshacer.")
    confirmed = st.checkbox("Entiendo que esta acción no se puede deshacer.", key=f"confirm_delete_history_{hc_number}")
    if st.button("Eliminar historia completa", key=f"delete_history_{hc_number}", disabled=not confirmed):
        _run_action(service.delete_history, hc_number, confirmed=confirmed, clear_on_success=('viewing_hc',))


def _render_exports(records):
    """Download buttons for the spreadsheet and the printable report of the listed records."""
    st.divider()
    st.subheader("Exportar")
    if not records:
        st.info("No hay registros para exportar.")
        return
    today = datetime.date.today().isoformat()
    # A generated report is only offered for the exact selection it was built from.
    selection = tuple((r.id, r.status) for r in records)
    if st.session_state.get('report_pdf_selection') != selection:
        st.session_state.pop('report_pdf', None)
    col1, col2 = st.columns(2)
    with col1:
        st.download_button(
            "Descargar Excel (.xlsx)", export_records_xlsx(records),
            f"{config.EXPORT_BASENAME}_{today}.xlsx", XLSX_MIME,
        )
    with col2:
        if st.button("Generar PDF", key="build_pdf"):
            try:
                # WeasyPrint needs native libraries; load it only when a report is requested.
                from hclog.pdf import generate_records_pdf
                st.session_state.report_pdf = generate_records_pdf(records)
                st.session_state.report_pdf_selection = selection
            except (ImportError, OSError):
                logger.exception("PDF report generation failed.")
                st.error("No se pudo generar el PDF en este equipo.")
        if st.session_state.get('report_pdf'):
            st.download_button(
                "Descargar PDF", st.session_state.report_pdf,
                f"{config.EXPORT_BASENAME}_{today}.pdf", "application/pdf",
            )
