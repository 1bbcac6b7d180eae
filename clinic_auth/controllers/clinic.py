"""
Controllers for the role dashboards and clinic records.

Patients file problem submissions; admins schedule them as appointments with
a doctor; doctors write prescriptions for their appointments.
"""

from typing import Any, Dict, Union
from http import HTTPStatus
import logging

from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import Forbidden, NotFound
from wtforms import Form, IntegerField, StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, NumberRange, Optional, \
    Regexp

from ..auth.lifecycle import AccountLifecycle
from ..domain import Appointment, ResolvedSession, Role, Submission, \
    to_jsonable
from ..exceptions import SchedulingConflict
from ..services import appointments, prescriptions
from ..services.accounts import summary
from . import ResponseData

logger = logging.getLogger(__name__)

DATE = r'^\d{4}-\d{2}-\d{2}$'
TIME = r'^\d{2}:\d{2}$'


class SubmissionForm(Form):
    """A patient describes a problem."""

    title = StringField('Title', validators=[DataRequired()])
    description = TextAreaField('Description', validators=[DataRequired()])
    type = StringField('Type', default='initial',
                       validators=[Optional(),
                                   AnyOf(('initial', 'follow-up'))])
    original_appointment_id = StringField('Appointment',
                                          validators=[Optional()])
    primary_concern = StringField('Primary concern', validators=[Optional()])
    body_area = StringField('Body area', validators=[Optional()])
    pain_level = IntegerField('Pain level',
                              validators=[Optional(), NumberRange(0, 10)])
    urgency = StringField('Urgency', validators=[Optional()])


class AppointmentForm(Form):
    """An admin schedules a submission with a doctor."""

    submission_id = StringField('Submission', validators=[DataRequired()])
    doctor_id = StringField('Doctor', validators=[DataRequired()])
    scheduled_date = StringField('Date', validators=[DataRequired(),
                                                     Regexp(DATE)])
    scheduled_time = StringField('Time', validators=[DataRequired(),
                                                     Regexp(TIME)])


class PrescriptionForm(Form):
    """A doctor prescribes one medicine per line, ``name|dosage|frequency``."""

    medicines = TextAreaField('Medicines', validators=[DataRequired()])
    notes = TextAreaField('Notes', validators=[Optional()])


def _records(items: list) -> list:
    return [to_jsonable(item) for item in items]


def dashboard(lifecycle: AccountLifecycle, session: ResolvedSession,
              params: Union[MultiDict, None] = None) -> ResponseData:
    """
    What each role sees when they arrive.

    Listings can be narrowed with the ``q`` (free text) and ``status`` query
    parameters. Submissions are searched by title, and appointments by the
    name of the other party.
    """
    store = lifecycle.accounts.store
    params = params or MultiDict()
    text = params.get('q')
    status = params.get('status') or None
    data: Dict[str, Any] = {'session': to_jsonable(session)}
    if session.role == Role.PATIENT:
        history = prescriptions.patient_history(store, session.uid)
        data.update({
            'submissions': _records(appointments.apply_filters(
                appointments.submissions_for_patient(store, session.uid,
                                                     status),
                text, 'title'
            )),
            'appointments': _records(appointments.apply_filters(
                history['appointments'], text, 'doctor_name', status
            )),
            'prescriptions': _records(history['prescriptions']),
        })
    elif session.role == Role.DOCTOR:
        data['appointments'] = _records(appointments.apply_filters(
            appointments.appointments_for_doctor(store, session.uid, status),
            text, 'patient_name'
        ))
    elif session.role == Role.ADMIN:
        data.update({
            'pending_accounts': [summary(account) for account
                                 in lifecycle.accounts.pending()],
            'pending_submissions': _records(appointments.apply_filters(
                appointments.pending_submissions(store), text, 'title'
            )),
            'appointments': _records(appointments.apply_filters(
                appointments.all_appointments(store, status), text,
                'patient_name'
            )),
            'doctors': [summary(doctor) for doctor
                        in lifecycle.accounts.doctors()],
        })
    return data, HTTPStatus.OK, {}


def submit_problem(lifecycle: AccountLifecycle, session: ResolvedSession,
                   form_data: MultiDict) -> ResponseData:
    """File a problem submission for the signed-in patient."""
    form = SubmissionForm(form_data)
    if not form.validate():
        return {'errors': form.errors}, HTTPStatus.BAD_REQUEST, {}
    extras = {
        'primary_concern': form.primary_concern.data,
        'body_area': form.body_area.data,
        'pain_level': form.pain_level.data,
        'urgency': form.urgency.data,
    }
    submission_id = appointments.create_submission(
        lifecycle.accounts.store, session.uid, form.title.data,
        form.description.data, type=form.type.data or 'initial',
        original_appointment_id=form.original_appointment_id.data or None,
        extras={key: value for key, value in extras.items()
                if value not in (None, '')}
    )
    return {'submission_id': submission_id}, HTTPStatus.CREATED, {}


def schedule_appointment(lifecycle: AccountLifecycle,
                         session: ResolvedSession,
                         form_data: MultiDict) -> ResponseData:
    """Turn a pending submission into an appointment with a doctor."""
    store = lifecycle.accounts.store
    form = AppointmentForm(form_data)
    if not form.validate():
        return {'errors': form.errors}, HTTPStatus.BAD_REQUEST, {}

    with store.atomic():
        submission = store.get(appointments.SUBMISSIONS,
                               form.submission_id.data)
        if submission is None:
            raise NotFound('No such submission')
        if submission.get('status') != Submission.PENDING:
            return {'error': 'This submission has already been scheduled.'}, \
                HTTPStatus.CONFLICT, {}
        doctor = lifecycle.accounts.get(form.doctor_id.data)
        if doctor is None or doctor.role != Role.DOCTOR \
                or not doctor.is_active:
            return {'error': 'Please choose an active doctor.'}, \
                HTTPStatus.BAD_REQUEST, {}

        try:
            appointment_id = appointments.create_appointment(
                store, submission['patient_id'], doctor.uid,
                form.submission_id.data, form.scheduled_date.data,
                form.scheduled_time.data
            )
        except SchedulingConflict as e:
            logger.debug('Refused double booking: %s', e)
            return {'error': 'The doctor already has an appointment at that '
                             'time.'}, HTTPStatus.CONFLICT, {}
        appointments.update_submission_status(store, form.submission_id.data,
                                              Submission.ASSIGNED)
    when = f'{form.scheduled_date.data} at {form.scheduled_time.data}'
    lifecycle.notifier.notify(
        submission['patient_id'],
        f'Your appointment with Dr. {doctor.name} is scheduled for {when}.',
        'assignment'
    )
    lifecycle.notifier.notify(
        doctor.uid,
        f'New appointment with {submission.get("patient_name")} on {when}.',
        'assignment'
    )
    logger.info('Admin %s scheduled appointment %s', session.uid,
                appointment_id)
    return {'appointment_id': appointment_id}, HTTPStatus.CREATED, {}


def _parse_medicines(text: str) -> list:
    medicines = []
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = [part.strip() for part in line.split('|')]
        if len(parts) != 3 or not all(parts):
            raise ValueError(f'Cannot read medicine: {line}')
        name, dosage, frequency = parts
        medicines.append({'name': name, 'dosage': dosage,
                          'frequency': frequency})
    return medicines


def write_prescription(lifecycle: AccountLifecycle, session: ResolvedSession,
                       appointment_id: str,
                       form_data: MultiDict) -> ResponseData:
    """Prescribe for one of the signed-in doctor's appointments."""
    store = lifecycle.accounts.store
    appointment = store.get(appointments.APPOINTMENTS, appointment_id)
    if appointment is None:
        raise NotFound('No such appointment')
    if appointment.get('doctor_id') != session.uid:
        raise Forbidden('Not your appointment')
    if appointment.get('status') not in Appointment.OPEN:
        return {'error': 'This appointment is closed.'}, \
            HTTPStatus.CONFLICT, {}

    form = PrescriptionForm(form_data)
    if not form.validate():
        return {'errors': form.errors}, HTTPStatus.BAD_REQUEST, {}
    try:
        medicines = _parse_medicines(form.medicines.data)
    except ValueError as e:
        return {'errors': {'medicines': [str(e)]}}, \
            HTTPStatus.BAD_REQUEST, {}

    prescription_id = prescriptions.create_prescription(
        store, appointment_id, appointment['patient_id'], session.uid,
        medicines, form.notes.data or ''
    )
    appointments.update_appointment_status(store, appointment_id,
                                           Appointment.PRESCRIBED)
    lifecycle.notifier.notify(
        appointment['patient_id'],
        f'Dr. {session.name} has written you a prescription.',
        'prescription'
    )
    return {'prescription_id': prescription_id}, HTTPStatus.CREATED, {}
