"""Tests for :mod:`clinic_auth.auth`."""
