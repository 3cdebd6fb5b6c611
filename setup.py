"""
ProjectSync setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="projectsync",
    version="1.0.0",
    description="ProjectSync — realtime project data, permissions and uploads",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "projectsync=projectsync.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "redis>=5.0",
        "celery[redis]>=5.3",
        "bcrypt>=4.1",
        "pyyaml>=6.0",
        "httpx>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
