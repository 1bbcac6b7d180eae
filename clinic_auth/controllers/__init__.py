"""
Request controllers for the clinic web application.

Controllers take request data and an :class:`.AccountLifecycle`, and return
``(data, status code, headers)``. They know nothing about Flask responses;
the routes in :mod:`clinic_auth.routes.ui` turn the tuples into JSON or
redirects.
"""

from typing import Tuple

ResponseData = Tuple[dict, int, dict]
