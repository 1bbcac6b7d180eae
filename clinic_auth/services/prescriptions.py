"""Prescriptions, which cannot be changed once written."""

from typing import Dict, List, Sequence, Union
import logging

from .. import domain
from ..domain import Appointment, Medicine, Prescription
from .documents import DocumentStore, Document, SERVER_TIMESTAMP
from .accounts import COLLECTION as ACCOUNTS
from .appointments import appointments_for_patient

logger = logging.getLogger(__name__)

COLLECTION = 'prescriptions'

MedicineData = Union[Medicine, Dict[str, str]]


def _to_prescription(document: Document) -> Prescription:
    prescription: Prescription = domain.from_dict(Prescription,
                                                  document.data)
    return prescription._replace(prescription_id=document.doc_id)


def _name_of(store: DocumentStore, uid: str) -> str:
    data = store.get(ACCOUNTS, uid)
    return data.get('name', 'Unknown') if data else 'Unknown'


def create_prescription(store: DocumentStore, appointment_id: str,
                        patient_id: str, doctor_id: str,
                        medicines: Sequence[MedicineData],
                        notes: str = '') -> str:
    """
    Write a prescription for an appointment.

    Parameters
    ----------
    store : :class:`.DocumentStore`
    appointment_id : str
    patient_id : str
    doctor_id : str
    medicines : list
        :class:`.Medicine` instances, or dicts with ``name``, ``dosage``, and
        ``frequency``.
    notes : str

    Returns
    -------
    str
        The prescription ID.

    """
    lines = [
        domain.to_dict(medicine if isinstance(medicine, Medicine)
                       else Medicine(**medicine))
        for medicine in medicines
    ]
    prescription_id = store.add(COLLECTION, {
        'appointment_id': appointment_id,
        'patient_id': patient_id,
        'patient_name': _name_of(store, patient_id),
        'doctor_id': doctor_id,
        'doctor_name': _name_of(store, doctor_id),
        'medicines': lines,
        'notes': notes or '',
        'created_at': SERVER_TIMESTAMP,
    })
    logger.debug('Prescription %s for appointment %s', prescription_id,
                 appointment_id)
    return prescription_id


def prescriptions_for_patient(store: DocumentStore,
                              patient_id: str) -> List[Prescription]:
    """A patient's prescriptions, newest first."""
    documents = sorted(
        store.query(COLLECTION, ('patient_id', '==', patient_id)),
        key=lambda doc: domain.sort_key_created(doc.data),
        reverse=True
    )
    return [_to_prescription(doc) for doc in documents]


def prescriptions_for_appointment(store: DocumentStore,
                                  appointment_id: str) -> List[Prescription]:
    """Prescriptions written for an appointment."""
    return [_to_prescription(doc) for doc in store.query(
        COLLECTION, ('appointment_id', '==', appointment_id)
    )]


def patient_history(store: DocumentStore, patient_id: str) \
        -> Dict[str, Union[List[Appointment], List[Prescription]]]:
    """A patient's appointments and prescriptions."""
    return {
        'appointments': appointments_for_patient(store, patient_id),
        'prescriptions': prescriptions_for_patient(store, patient_id),
    }
