#!/usr/bin/env python3
"""
GeneVault Setup Script
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme = Path(__file__).parent / "README.md"
long_description = readme.read_text(encoding="utf-8") if readme.exists() else ""

# Read requirements
requirements = Path(__file__).parent / "genevault_requirements.txt"
install_requires = []
if requirements.exists():
    install_requires = requirements.read_text().strip().split('\n')
    install_requires = [r.strip() for r in install_requires if r.strip() and not r.startswith('#')]

setup(
    name="genevault",
    version="1.0.0",
    description="Tiered encrypted storage of genetic datasets on content-addressed networks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*", "docs"]),
    python_requires=">=3.11",
    install_requires=install_requires,
    extras_require={
        "dev": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Topic :: Security :: Cryptography",
    ],
    keywords="genomics encryption storage ipfs tiered-access",
)
