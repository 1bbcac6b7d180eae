"""Provides Flask integration for the clinic web interface."""

from typing import Any, Callable
from functools import wraps
from http import HTTPStatus
import logging

from flask import Blueprint, Response, g, jsonify, make_response, redirect, \
    request

from ..auth import current_lifecycle
from ..auth.decorators import login_required, role_required
from ..controllers import ResponseData, approvals, authentication, clinic, \
    registration
from ..domain import Role

logger = logging.getLogger(__name__)
blueprint = Blueprint('ui', __name__, url_prefix='')


def _respond(result: ResponseData) -> Response:
    data, code, headers = result
    if code == HTTPStatus.SEE_OTHER:
        logger.debug('Redirecting to %s', headers.get('Location'))
        response = make_response(redirect(headers['Location'], code=code))
        return response
    return make_response(jsonify(data), code, headers)


def anonymous_only(func: Callable) -> Callable:
    """Redirect signed-in users to their dashboard."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        lifecycle = current_lifecycle()
        user = lifecycle.current_user()
        if user is not None:
            return make_response(redirect(lifecycle.dashboard_for(user.role),
                                          code=HTTPStatus.SEE_OTHER))
        return func(*args, **kwargs)
    return wrapper


@blueprint.after_request
def apply_response_headers(response: Response) -> Response:
    """Prevent UI redress attacks."""
    response.headers['Content-Security-Policy'] = "frame-ancestors 'none'"
    response.headers['X-Frame-Options'] = 'DENY'
    return response


@blueprint.route('/login', methods=['GET', 'POST'])
@anonymous_only
def login() -> Response:
    """User can sign in with e-mail and password."""
    return _respond(authentication.login(request.method, request.form,
                                         current_lifecycle()))


@blueprint.route('/register', methods=['GET', 'POST'])
@anonymous_only
def register() -> Response:
    """Interface for creating new accounts."""
    return _respond(registration.register(request.method, request.form,
                                          current_lifecycle()))


@blueprint.route('/logout', methods=['GET'])
def logout() -> Response:
    """Sign out."""
    return _respond(authentication.logout(current_lifecycle()))


@blueprint.route('/auth_status', methods=['GET'])
def auth_status() -> Response:
    """Who is signed in, if anybody."""
    return _respond(authentication.auth_status(current_lifecycle()))


@blueprint.route('/patient/dashboard', methods=['GET'])
@role_required(Role.PATIENT)
def patient_dashboard() -> Response:
    """Patient landing page."""
    return _respond(clinic.dashboard(current_lifecycle(), g.session,
                                      request.args))


@blueprint.route('/doctor/dashboard', methods=['GET'])
@role_required(Role.DOCTOR)
def doctor_dashboard() -> Response:
    """Doctor landing page."""
    return _respond(clinic.dashboard(current_lifecycle(), g.session,
                                      request.args))


@blueprint.route('/admin/dashboard', methods=['GET'])
@role_required(Role.ADMIN)
def admin_dashboard() -> Response:
    """Admin landing page."""
    return _respond(clinic.dashboard(current_lifecycle(), g.session,
                                      request.args))


@blueprint.route('/admin/pending', methods=['GET'])
@role_required(Role.ADMIN)
def pending_accounts() -> Response:
    """Accounts waiting for approval."""
    return _respond(approvals.pending_accounts(current_lifecycle()))


@blueprint.route('/admin/pending/<string:uid>/approve', methods=['POST'])
@role_required(Role.ADMIN)
def approve_account(uid: str) -> Response:
    """Approve a pending account."""
    return _respond(approvals.approve(current_lifecycle(), g.session, uid))


@blueprint.route('/admin/pending/<string:uid>/reject', methods=['POST'])
@role_required(Role.ADMIN)
def reject_account(uid: str) -> Response:
    """Reject a pending account."""
    return _respond(approvals.reject(current_lifecycle(), g.session, uid))


@blueprint.route('/admin/appointments', methods=['POST'])
@role_required(Role.ADMIN)
def schedule_appointment() -> Response:
    """Schedule a pending submission with a doctor."""
    return _respond(clinic.schedule_appointment(current_lifecycle(),
                                                g.session, request.form))


@blueprint.route('/patient/submissions', methods=['POST'])
@role_required(Role.PATIENT)
def submit_problem() -> Response:
    """File a problem submission."""
    return _respond(clinic.submit_problem(current_lifecycle(), g.session,
                                          request.form))


@blueprint.route('/doctor/appointments/<string:appointment_id>/prescription',
                 methods=['POST'])
@role_required(Role.DOCTOR)
def write_prescription(appointment_id: str) -> Response:
    """Prescribe for an appointment."""
    return _respond(clinic.write_prescription(current_lifecycle(), g.session,
                                              appointment_id, request.form))


@blueprint.route('/notifications', methods=['GET'])
@login_required
def notifications() -> Response:
    """The signed-in user's notifications."""
    return _respond(approvals.notifications(current_lifecycle(), g.user.uid))


@blueprint.route('/notifications/<string:notification_id>/read',
                 methods=['POST'])
@login_required
def mark_notification_read(notification_id: str) -> Response:
    """Mark a notification as read."""
    return _respond(approvals.mark_read(current_lifecycle(), g.user.uid,
                                        notification_id))
