"""
ZeroSync: a rollup sequencer simulation backend

ZeroSync accepts transactions, groups them into batches, commits a state-root
transition per batch, proves each batch and optionally anchors proven batches to
an external chain.
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh.readlines() if line.strip() and not line.startswith("#")]

# Get version from the package
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '.'))
from zerosync.units.version import get_version
from zerosync import VERSION

setup(
    name="ZeroSync",
    version=get_version(VERSION),
    description="Rollup sequencer with batching, state roots, batch proofs and L1 anchoring",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=['zerosync', 'zerosync.*'], exclude=['tests*']),
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
        ],
    },
    entry_points={
        "console_scripts": [
            "zerosync=zerosync.cli:zerosync",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 2 - Pre-Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Application Frameworks",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    keywords="rollup, sequencer, zero-knowledge, batching",
)
