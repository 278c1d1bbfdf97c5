"""
UI tests for the HCLog application using Streamlit's AppTest framework.

These tests simulate user interactions with the frontend to verify that the
GUI behaves as expected: the login form, the guest request form and the
admin loan form, including the messages shown after each action.
"""
from streamlit.testing.v1 import AppTest


def _by_label(widgets, label):
    return next(w for w in widgets if w.label == label)


def test_ui_login_rejects_wrong_password(service):
    def render(svc):
        import gui as gui_module

        gui_module.show_login_form(svc)

    app = AppTest.from_function(render, args=(service,), default_timeout=15)
    app.run()
    assert any("Control de Historias Clínicas" in md.value for md in app.markdown)

    _by_label(app.text_input, "Usuario").input("admin")
    _by_label(app.text_input, "Contraseña").input("wrong")
    _by_label(app.button, "Iniciar Sesión").click().run()

    assert any("Usuario o contraseña incorrectos." in err.value for err in app.error)
    assert service.current_user is None


def test_ui_login_sets_session_user(service):
    """
    Tests that valid credentials store the user in the session state.

    The username lookup ignores case, as the stored accounts do.
    """
    def render(svc):
        import gui as gui_module

        gui_module.show_login_form(svc)

    app = AppTest.from_function(render, args=(service,), default_timeout=15)
    app.run()

    _by_label(app.text_input, "Usuario").input("Admin")
    _by_label(app.text_input, "Contraseña").input("admin")
    _by_label(app.button, "Iniciar Sesión").click().run()

    assert app.session_state["current_user"].username == "admin"
    assert not app.error


def test_ui_guest_submits_request(hospital_service, act_as):
    """
    Tests the guest request form end to end.

    Verifies that submitting history numbers creates a request for the guest's
    own service and that the confirmation is shown after the rerun.
    """
    service = hospital_service
    guest = act_as("pedia")

    def render(svc):
        import gui as gui_module

        gui_module.show_main_app(svc)

    app = AppTest.from_function(render, args=(service,), default_timeout=15)
    app.session_state["current_user"] = guest
    app.run()
    assert not app.exception

    _by_label(app.text_input, "N° de Historia Clínica").input("333, 444")
    _by_label(app.button, "Enviar Solicitud").click().run()

    assert len(service.state.requests) == 1
    request = service.state.requests[0]
    assert request.hc_numbers == "333, 444"
    assert request.destination_service == "Pediatría"
    assert request.requester_name == "pedia"
    assert any("Solicitud enviada para aprobación." in s.value for s in app.success)


def test_ui_admin_registers_loan_and_sees_conflict(hospital_service):
    service = hospital_service
    admin = service.state.find_user("admin")

    def render(svc):
        import gui as gui_module

        gui_module.show_main_app(svc)

    app = AppTest.from_function(render, args=(service,), default_timeout=15)
    app.session_state["current_user"] = admin
    app.run()
    assert any("No hay registros que coincidan con los filtros." in info.value for info in app.info)

    def fill_and_submit(hc_numbers):
        _by_label(app.text_input, "N° de Historia Clínica").input(hc_numbers)
        _by_label(app.text_input, "Servicio de Destino").input("Pediatría")
        _by_label(app.text_input, "Responsable").input("Dra. Quispe")
        _by_label(app.text_input, "Celular").input("984000111")
        _by_label(app.button, "Registrar Préstamo").click().run()

    fill_and_submit("111")
    assert [r.hc_number for r in service.state.records] == ["111"]
    assert any("Préstamo registrado para H.C.: 111." in s.value for s in app.success)

    fill_and_submit("111")
    assert len(service.state.records) == 1
    assert any("111" in err.value for err in app.error)


def _admin_app(service):
    def render(svc):
        import gui as gui_module

        gui_module.show_main_app(svc)

    app = AppTest.from_function(render, args=(service,), default_timeout=15)
    app.session_state["current_user"] = service.state.find_user("admin")
    app.run()
    return app


def test_ui_record_deletion_asks_for_confirmation(hospital_service):
    """
    Tests that the record "Eliminar" button only opens a confirmation.

    Cancelling keeps the record; confirming deletes it.
    """
    service = hospital_service
    record = service.register_loan("111", "Pediatría", "Dra. Quispe", "984000111", "2024-05-10T09:00").created[0]
    app = _admin_app(service)

    app.button(key=f"delete_{record.id}").click().run()
    assert service.state.find_record(record.id) is record
    assert any("H.C. N° 111" in w.value for w in app.warning)

    app.button(key=f"cancel_delete_{record.id}").click().run()
    assert service.state.find_record(record.id) is record
    assert app.session_state["confirm_delete_record_id"] is None

    app.button(key=f"delete_{record.id}").click().run()
    app.button(key=f"confirm_delete_{record.id}").click().run()
    assert service.state.find_record(record.id) is None
    assert app.session_state["confirm_delete_record_id"] is None


def test_ui_refused_rejection_keeps_form_open(hospital_service, act_as):
    service = hospital_service
    act_as("pedia")
    request = service.submit_request("333", "Pediatría").created[0]
    act_as("admin")
    app = _admin_app(service)

    app.button(key=f"reject_{request.id}").click().run()
    _by_label(app.button, "Confirmar rechazo").click().run()
    assert service.state.find_request(request.id) is request
    assert app.error
    assert app.session_state["rejecting_request_id"] == request.id

    app.text_area(key=f"reject_reason_{request.id}").input("Historia en archivo pasivo")
    _by_label(app.button, "Confirmar rechazo").click().run()
    assert service.state.find_request(request.id) is None
    assert app.session_state["rejecting_request_id"] is None


def test_ui_generated_pdf_is_dropped_when_selection_changes(hospital_service):
    service = hospital_service
    service.register_loan("111, 222", "Pediatría", "Dra. Quispe", "984000111", "2024-05-10T09:00")
    selection = tuple((r.id, r.status) for r in service.get_records())

    app = _admin_app(service)
    app.session_state["report_pdf"] = b"%PDF-1.7"
    app.session_state["report_pdf_selection"] = selection
    app.run()
    assert app.session_state["report_pdf"] == b"%PDF-1.7"

    _by_label(app.text_input, "Buscar").input("222").run()
    assert "report_pdf" not in app.session_state
