"""Tests for :mod:`clinic_auth.services.prescriptions`."""

from unittest import TestCase
from datetime import datetime, timedelta

from pytz import UTC

from ...domain import Account, Medicine, Role, Status
from .. import appointments, prescriptions
from ..accounts import AccountStore
from ..documents import InMemoryDocumentStore


class TestPrescriptions(TestCase):
    """Doctors write prescriptions for appointments."""

    def setUp(self):
        """A patient with one appointment."""
        self.store = InMemoryDocumentStore()
        self.clock = datetime(2026, 2, 1, 9, 0, tzinfo=UTC)
        self.store.now = self._tick
        people = AccountStore(self.store)
        people.create(Account(uid='p1', name='Pat', email='p1@example.com',
                              role=Role.PATIENT, status=Status.ACTIVE))
        people.create(Account(uid='d1', name='Dana', email='d1@example.com',
                              role=Role.DOCTOR, status=Status.ACTIVE))
        submission_id = appointments.create_submission(self.store, 'p1',
                                                       'Cough', 'Dry')
        self.appointment_id = appointments.create_appointment(
            self.store, 'p1', 'd1', submission_id, '2026-03-01', '10:00'
        )

    def _tick(self):
        self.clock += timedelta(minutes=1)
        return self.clock

    def test_create(self):
        """Medicines may be given as dicts or :class:`.Medicine`."""
        prescription_id = prescriptions.create_prescription(
            self.store, self.appointment_id, 'p1', 'd1',
            [{'name': 'Syrup', 'dosage': '10ml', 'frequency': 'twice daily'},
             Medicine('Lozenge', '1', 'as needed')],
            notes='Drink water'
        )
        [prescription] = prescriptions.prescriptions_for_appointment(
            self.store, self.appointment_id
        )
        self.assertEqual(prescription.prescription_id, prescription_id)
        self.assertEqual(prescription.patient_name, 'Pat')
        self.assertEqual(prescription.doctor_name, 'Dana')
        self.assertEqual(prescription.notes, 'Drink water')
        self.assertEqual(prescription.medicines, [
            Medicine('Syrup', '10ml', 'twice daily'),
            Medicine('Lozenge', '1', 'as needed'),
        ])

    def test_history(self):
        """A patient's history has appointments and prescriptions."""
        first = prescriptions.create_prescription(
            self.store, self.appointment_id, 'p1', 'd1',
            [Medicine('Syrup', '10ml', 'daily')]
        )
        second = prescriptions.create_prescription(
            self.store, self.appointment_id, 'p1', 'd1',
            [Medicine('Tea', '1 cup', 'daily')]
        )
        history = prescriptions.patient_history(self.store, 'p1')
        self.assertEqual([a.appointment_id for a in history['appointments']],
                         [self.appointment_id])
        self.assertEqual(
            [p.prescription_id for p in history['prescriptions']],
            [second, first]
        )
        self.assertEqual(prescriptions.patient_history(self.store, 'p2'),
                         {'appointments': [], 'prescriptions': []})
