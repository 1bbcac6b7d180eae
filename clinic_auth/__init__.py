"""
Clinic accounts, sessions, and records.

This package provides the application layer of a clinic management system:
registration and role-based sign-in for patients, doctors, and admins; admin
approval of doctor and admin accounts; per-user notifications; and the
clinic records (problem submissions, appointments, prescriptions) that the
roles work on.

Persistence goes through a small document store interface
(:mod:`clinic_auth.services.documents`), and credential checks go through an
identity provider interface (:mod:`clinic_auth.services.identity`). Both are
passed in to the components that need them.
"""
