"""Tests for :mod:`clinic_auth.services`."""
