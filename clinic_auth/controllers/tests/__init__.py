"""Tests for :mod:`clinic_auth.controllers`."""
