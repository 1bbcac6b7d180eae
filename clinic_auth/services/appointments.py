"""
Problem submissions and appointments.

A patient files a problem submission; an admin turns it into an appointment
with a doctor at a given date and time. A doctor may not hold two open
appointments in the same slot.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, \
    TypeVar
import logging

from .. import domain
from ..domain import Appointment, Role, Submission
from ..exceptions import SchedulingConflict
from .documents import DocumentStore, Document, SERVER_TIMESTAMP, Unsubscribe
from .accounts import COLLECTION as ACCOUNTS

logger = logging.getLogger(__name__)

SUBMISSIONS = 'problem_submissions'
APPOINTMENTS = 'appointments'

SUBMISSION_EXTRAS = ('primary_concern', 'body_area', 'pain_level', 'urgency')
UNKNOWN_NAME = 'Unknown'
ALL = 'all'

Record = TypeVar('Record', Submission, Appointment)


def _name_of(store: DocumentStore, uid: str) -> str:
    data = store.get(ACCOUNTS, uid)
    return data.get('name', UNKNOWN_NAME) if data else UNKNOWN_NAME


def _to_submission(document: Document) -> Submission:
    submission: Submission = domain.from_dict(Submission, document.data)
    return submission._replace(submission_id=document.doc_id)


def _to_appointment(document: Document) -> Appointment:
    appointment: Appointment = domain.from_dict(Appointment, document.data)
    return appointment._replace(appointment_id=document.doc_id)


def _submissions_newest_first(documents: List[Document]) -> List[Submission]:
    documents = sorted(documents,
                       key=lambda doc: domain.sort_key_created(doc.data),
                       reverse=True)
    return [_to_submission(doc) for doc in documents]


def _appointments_latest_first(documents: List[Document]) \
        -> List[Appointment]:
    documents = sorted(documents, key=lambda doc: (
        doc.data.get('scheduled_date') or '',
        doc.data.get('scheduled_time') or ''
    ), reverse=True)
    return [_to_appointment(doc) for doc in documents]


def _with_status(where: List[Any], status: Optional[str]) -> List[Any]:
    if status and status != ALL:
        where.append(('status', '==', status))
    return where


def apply_filters(records: Iterable[Record], text: Optional[str] = None,
                  field: str = 'title',
                  status: Optional[str] = None) -> List[Record]:
    """
    Narrow a listing down by free text and by status.

    Parameters
    ----------
    records : iterable
        Submissions or appointments.
    text : str
        Kept are records whose ``field`` contains this, ignoring case. Blank
        text matches everything.
    field : str
        Name of the field to search.
    status : str
        Kept are records with exactly this status. ``None`` and ``'all'``
        match everything.

    Returns
    -------
    list

    """
    needle = (text or '').strip().lower()
    result = []
    for record in records:
        if status and status != ALL and record.status != status:
            continue
        value = getattr(record, field, None) or ''
        if needle and needle not in value.lower():
            continue
        result.append(record)
    return result


# Problem submissions.


def create_submission(store: DocumentStore, patient_id: str, title: str,
                      description: str, type: str = 'initial',
                      original_appointment_id: Optional[str] = None,
                      extras: Optional[Dict[str, Any]] = None) -> str:
    """
    File a new problem submission for a patient.

    Parameters
    ----------
    store : :class:`.DocumentStore`
    patient_id : str
    title : str
    description : str
    type : str
        Either ``initial`` or ``follow-up``.
    original_appointment_id : str
        For follow-ups, the appointment being followed up.
    extras : dict
        Optional details; only keys in :data:`SUBMISSION_EXTRAS` are kept.

    Returns
    -------
    str
        The submission ID.

    """
    data: Dict[str, Any] = {
        'patient_id': patient_id,
        'patient_name': _name_of(store, patient_id),
        'title': title,
        'description': description,
        'status': Submission.PENDING,
        'type': type or 'initial',
        'original_appointment_id': original_appointment_id,
        'created_at': SERVER_TIMESTAMP,
    }
    for key, value in (extras or {}).items():
        if key in SUBMISSION_EXTRAS:
            data[key] = value
        else:
            logger.debug('Ignoring unknown submission field %s', key)
    return store.add(SUBMISSIONS, data)


def pending_submissions(store: DocumentStore) -> List[Submission]:
    """Submissions that have not been assigned yet, newest first."""
    return _submissions_newest_first(
        store.query(SUBMISSIONS, ('status', '==', Submission.PENDING))
    )


def submissions_for_patient(store: DocumentStore, patient_id: str,
                            status: Optional[str] = None) \
        -> List[Submission]:
    """A patient's submissions, newest first, optionally with one status."""
    where = _with_status([('patient_id', '==', patient_id)], status)
    return _submissions_newest_first(store.query(SUBMISSIONS, *where))


def update_submission_status(store: DocumentStore, submission_id: str,
                             status: str) -> None:
    """Set the status of a submission (``pending`` or ``assigned``)."""
    store.update(SUBMISSIONS, submission_id, {'status': status})


def watch_submissions(store: DocumentStore,
                      callback: Callable[[List[Submission]], None]) \
        -> Unsubscribe:
    """Listen for changes to pending submissions (newest first)."""
    def _on_error(e: Exception) -> None:
        logger.error('Submissions listener error: %s', e)
        callback([])

    return store.subscribe(
        SUBMISSIONS, [('status', '==', Submission.PENDING)],
        lambda documents: callback(_submissions_newest_first(documents)),
        _on_error
    )


# Appointments.


def has_doctor_conflict(store: DocumentStore, doctor_id: str, date: str,
                        time: str) -> bool:
    """Whether the doctor has an open appointment at ``date`` ``time``."""
    return bool(store.query(
        APPOINTMENTS,
        ('doctor_id', '==', doctor_id),
        ('scheduled_date', '==', date),
        ('scheduled_time', '==', time),
        ('status', 'in', Appointment.OPEN),
    ))


def create_appointment(store: DocumentStore, patient_id: str,
                       doctor_id: str, submission_id: str, date: str,
                       time: str) -> str:
    """
    Schedule an appointment for a submission.

    Patient and doctor names, and the problem title and description, are
    copied onto the appointment.

    Returns
    -------
    str
        The appointment ID.

    Raises
    ------
    :class:`.SchedulingConflict`
        Raised if the doctor already has an open appointment in the slot.

    """
    with store.atomic():
        if has_doctor_conflict(store, doctor_id, date, time):
            raise SchedulingConflict(
                f'Doctor {doctor_id} is already booked on {date} at {time}'
            )
        submission = store.get(SUBMISSIONS, submission_id) or {}
        return store.add(APPOINTMENTS, {
            'patient_id': patient_id,
            'patient_name': _name_of(store, patient_id),
            'doctor_id': doctor_id,
            'doctor_name': _name_of(store, doctor_id),
            'submission_id': submission_id,
            'problem_title': submission.get('title', ''),
            'problem_description': submission.get('description', ''),
            'scheduled_date': date,
            'scheduled_time': time,
            'status': Appointment.ASSIGNED,
            'created_at': SERVER_TIMESTAMP,
        })


def appointments_for_patient(store: DocumentStore, patient_id: str,
                             status: Optional[str] = None) \
        -> List[Appointment]:
    """A patient's appointments, latest date first."""
    where = _with_status([('patient_id', '==', patient_id)], status)
    return _appointments_latest_first(store.query(APPOINTMENTS, *where))


def appointments_for_doctor(store: DocumentStore, doctor_id: str,
                            status: Optional[str] = None) \
        -> List[Appointment]:
    """A doctor's appointments, latest date first."""
    where = _with_status([('doctor_id', '==', doctor_id)], status)
    return _appointments_latest_first(store.query(APPOINTMENTS, *where))


def all_appointments(store: DocumentStore,
                     status: Optional[str] = None) -> List[Appointment]:
    """Every appointment, latest date first."""
    where = _with_status([], status)
    return _appointments_latest_first(store.query(APPOINTMENTS, *where))


def update_appointment_status(store: DocumentStore, appointment_id: str,
                              status: str) -> None:
    """Set the status of an appointment."""
    store.update(APPOINTMENTS, appointment_id, {'status': status})


def watch_appointments(store: DocumentStore, user_id: str, role: str,
                       callback: Callable[[List[Appointment]], None]) \
        -> Unsubscribe:
    """
    Listen for changes to the appointments visible to a user.

    Admins see every appointment; doctors and patients see their own.
    """
    if role == Role.ADMIN:
        where = []
    elif role == Role.DOCTOR:
        where = [('doctor_id', '==', user_id)]
    else:
        where = [('patient_id', '==', user_id)]

    def _on_error(e: Exception) -> None:
        logger.error('Appointments listener error: %s', e)
        callback([])

    return store.subscribe(
        APPOINTMENTS, where,
        lambda documents: callback(_appointments_latest_first(documents)),
        _on_error
    )
