"""Defines account, session, and clinic record concepts."""

from typing import Any, Optional, NamedTuple, List, Callable, Dict
from datetime import datetime
from functools import partial
import logging

import dateutil.parser

logger = logging.getLogger(__name__)


class Role(object):
    """Known account roles."""

    PATIENT = 'patient'
    DOCTOR = 'doctor'
    ADMIN = 'admin'

    ALL = (PATIENT, DOCTOR, ADMIN)


class Status(object):
    """Known account statuses."""

    ACTIVE = 'active'
    PENDING = 'pending'
    REJECTED = 'rejected'

    ALL = (ACTIVE, PENDING, REJECTED)


class Identity(NamedTuple):
    """An authenticated principal issued by the identity provider."""

    uid: str
    """Stable identifier assigned by the provider."""

    email: str
    """The e-mail address used to sign in."""

    display_name: Optional[str] = None
    """Name registered with the provider, if any."""


class Account(NamedTuple):
    """Application-level profile of an identity, keyed by ``uid``."""

    uid: str
    """Primary key; same as :attr:`Identity.uid`."""

    name: str
    """Display name."""

    email: str
    """Contact e-mail address."""

    role: str
    """One of :attr:`Role.ALL`. Does not change after registration."""

    status: str
    """One of :attr:`Status.ALL`."""

    phone: str = ''
    address: str = ''

    specialization: Optional[str] = None
    """Doctors only."""

    created_at: Optional[datetime] = None
    """Assigned by the document store when the account is written."""

    @property
    def is_active(self) -> bool:
        """Whether the account may hold an authenticated session."""
        return self.status == Status.ACTIVE


class ResolvedSession(NamedTuple):
    """The authorized session handed to a protected page."""

    uid: str
    role: str
    name: Optional[str] = None


class CurrentUser(NamedTuple):
    """Result of probing for the signed-in user."""

    uid: str
    email: str
    role: str
    name: Optional[str] = None


class Notification(NamedTuple):
    """A per-user message. Only :attr:`read` changes after creation."""

    user_id: str
    message: str
    type: str
    read: bool = False
    related_user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    notification_id: Optional[str] = None

    APPROVAL_REQUEST = 'approval_request'
    APPROVAL_RESULT = 'approval_result'


class Submission(NamedTuple):
    """A problem reported by a patient, awaiting assignment to a doctor."""

    patient_id: str
    patient_name: str
    title: str
    description: str
    status: str = 'pending'
    type: str = 'initial'
    """Either ``initial`` or ``follow-up``."""

    original_appointment_id: Optional[str] = None
    """For follow-ups, the appointment being followed up."""

    primary_concern: Optional[str] = None
    body_area: Optional[str] = None
    pain_level: Optional[int] = None
    urgency: Optional[str] = None
    created_at: Optional[datetime] = None
    submission_id: Optional[str] = None

    PENDING = 'pending'
    ASSIGNED = 'assigned'


class Appointment(NamedTuple):
    """A scheduled visit between a patient and a doctor."""

    patient_id: str
    patient_name: str
    doctor_id: str
    doctor_name: str
    submission_id: str
    scheduled_date: str
    """Date in ``YYYY-MM-DD`` format."""

    scheduled_time: str
    """Time in ``HH:MM`` (24-hour) format."""

    problem_title: str = ''
    problem_description: str = ''
    status: str = 'assigned'
    created_at: Optional[datetime] = None
    appointment_id: Optional[str] = None

    ASSIGNED = 'assigned'
    PRESCRIBED = 'prescribed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    OPEN = (ASSIGNED, PRESCRIBED)
    """Statuses that occupy a doctor's time slot."""


class Medicine(NamedTuple):
    """A single line of a prescription."""

    name: str
    dosage: str
    frequency: str


class Prescription(NamedTuple):
    """A doctor's prescription. Immutable once written."""

    appointment_id: str
    patient_id: str
    patient_name: str
    doctor_id: str
    doctor_name: str
    medicines: List[Medicine] = []
    notes: str = ''
    created_at: Optional[datetime] = None
    prescription_id: Optional[str] = None

    @classmethod
    def before_init(cls, data: dict) -> None:
        """Make sure that medicines are :class:`.Medicine` instances."""
        data['medicines'] = [
            Medicine(**obj) if isinstance(obj, dict) else Medicine(*obj)
            for obj in data.get('medicines', [])
        ]


# Helpers and private functions.


def to_dict(obj: tuple) -> dict:
    """
    Generate a dict representation of a NamedTuple instance.

    This just uses the built-in ``_asdict`` method on the instance, but also
    calls this on any child NamedTuple instances (recursively) so that the
    entire tree is cast to ``dict``. Unlike a wire format, datetimes are
    left as they are; the document store decides how to persist them.

    Parameters
    ----------
    obj : tuple
        A NamedTuple instance.

    Returns
    -------
    dict

    """
    if not hasattr(obj, '_asdict'):  # NamedTuple-generated classes have this.
        return {}
    data = obj._asdict()  # type: ignore

    def _cast(obj: Any) -> Any:
        if hasattr(obj, '_asdict'):
            obj = to_dict(obj)
        elif isinstance(obj, list):
            obj = [_cast(o) for o in obj]
        return obj

    return {key: _cast(value) for key, value in data.items()}


def from_dict(cls: type, data: dict) -> Any:
    """
    Generate a NamedTuple instance from a dict, with recursion.

    This is the inverse of :func:`to_dict`. Keys in ``data`` that are not
    fields of ``cls`` are ignored, so whole documents can be passed in.

    Parameters
    ----------
    cls: type
        Any NamedTuple class.

    data: dict
        Data with which to instantiate ``cls`` and its children.

    Returns
    -------
    NamedTuple
        An instance of ``cls``.
    """
    _data = {}
    for field, field_type in cls.__annotations__.items():  # type: ignore
        if field not in cls._fields or field not in data:  # type: ignore
            continue
        value = data[field]
        target_type = _get_cast_type(field_type, value)
        if target_type:
            value = target_type(value)
        _data[field] = value
    if hasattr(cls, 'before_init'):
        cls.before_init(_data)
    return cls(**_data)


def _is_a_namedtuple(field_type: Any) -> bool:
    """Determine whether or not a field type is a NamedTuple class."""
    return hasattr(field_type, '_fields')


def _type_args(field_type: Any) -> tuple:
    """Get the parameters of a typing class (e.g. Optional[datetime])."""
    return getattr(field_type, '__args__', None) or ()


def _get_cast_type_for_str(field_type: Any) -> Optional[Callable]:
    """
    Determine the target type for a ``str`` value.

    Returns ``None`` if a suitable target cannot be determined.
    """
    if field_type is datetime or datetime in _type_args(field_type):
        return dateutil.parser.isoparse
    return None


def _get_cast_type_for_dict(field_type: Any) -> Optional[Callable]:
    """
    Determine the NamedTuple target type for a ``dict`` value.

    Returns ``None`` if a suitable target cannot be determined.
    """
    if _is_a_namedtuple(field_type):
        return partial(from_dict, field_type)
    for s_type in _type_args(field_type):
        if s_type is dict:
            return None
        if _is_a_namedtuple(s_type):
            return partial(from_dict, s_type)
    return None


def _get_cast_type(field_type: Any, value: Any) -> Optional[Callable]:
    """Get a casting callable for a field type/value."""
    if type(value) is dict:
        return _get_cast_type_for_dict(field_type)
    if type(value) is str:
        return _get_cast_type_for_str(field_type)
    return None


def sort_key_created(data: Dict[str, Any]) -> float:
    """Sort key for documents by ``created_at``; missing values count as 0."""
    created = data.get('created_at')
    if isinstance(created, datetime):
        return created.timestamp()
    return 0.0


def to_jsonable(obj: tuple) -> dict:
    """Like :func:`to_dict`, but with datetimes as ISO-8601 strings."""
    def _cast(value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, dict):
            return {key: _cast(item) for key, item in value.items()}
        if isinstance(value, list):
            return [_cast(item) for item in value]
        return value
    return {key: _cast(value) for key, value in to_dict(obj).items()}
