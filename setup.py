"""Install clinic auth package."""

from setuptools import setup, find_packages

setup(
    name='clinic-auth',
    version='0.1.0',
    packages=find_packages(exclude=['*test*']),
    python_requires='>=3.8',
    install_requires=[
        "flask",
        "wtforms",
        "email-validator",
        "sqlalchemy>=1.4",
        "pyjwt>=2.0",
        "pytz",
        "python-dateutil",
        "python-json-logger>=2.0",
    ],
    extras_require={
        'test': [
            "pytest",
            "mimesis",
        ]
    },
    zip_safe=False
)
