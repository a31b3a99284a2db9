#!/usr/bin/env python3
"""
Setup script for the matchmaking session client
"""

from setuptools import setup, find_namespace_packages

setup(
    name="matchclient",
    version="0.0.1",
    description="WebSocket client for the matchmaking and game session protocol",
    packages=find_namespace_packages(include=["matchclient", "matchclient.*", "shared", "shared.*"]),
    install_requires=[
        "websockets==15.0",
        "click==8.1.7",
        "typer==0.12.3",
        "rich==13.9.2",
        "aioconsole==0.8.1",
        "PyYAML==6.0.1",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
            "pytest-asyncio==1.2.0",
        ],
    },
    python_requires=">=3.9",
    entry_points={
        'console_scripts': [
            'match-client=matchclient.cli:main',
        ],
    },
)
