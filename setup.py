"""Setup configuration for dbshield."""

from setuptools import setup, find_packages

setup(
    name="dbshield",
    version="1.0.0",
    description="Scheduled MariaDB/PostgreSQL backups with change detection and lock-aware retries",
    author="Your Name",
    packages=find_packages(exclude=["tests"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "croniter>=2.0.0",
        "psycopg[binary]>=3.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dbshield=dbshield.cli:cli",
        ],
    },
    python_requires=">=3.9",
)
