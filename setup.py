#!/usr/bin/env python3
"""
Setup script for lssh.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Author: Vamsi


def read_readme():
    """
    Read the README file.

    :return: README content as string
    """
    readme_path = Path(__file__).parent / "README.md"
    if readme_path.exists():
        with open(readme_path, "r", encoding="utf-8") as f:
            return f.read()
    return "lssh - run commands and interactive shells on many SSH servers at once."


def read_requirements():
    """
    Read the requirements file.

    :return: List of requirements
    """
    requirements_path = Path(__file__).parent / "requirements.txt"
    if requirements_path.exists():
        with open(requirements_path, "r", encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip() and not line.startswith("#")]
    return []


def get_version():
    """
    Get the version from the package without importing it.

    :return: Version string
    """
    init_path = Path(__file__).parent / "lssh" / "__init__.py"
    for line in init_path.read_text(encoding="utf-8").splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip('"\'')
    return "1.0.0"


setup(
    name="lssh",
    version=get_version(),
    description="Run commands and interactive shells on many SSH servers at once",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    author="Vamsi",
    author_email="vamsi@example.com",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Systems Administration",
        "Topic :: System :: Networking",
    ],
    python_requires=">=3.10",
    install_requires=read_requirements(),
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "lssh=lssh.cli:cli",
        ],
    },
    include_package_data=True,
    zip_safe=False,
    keywords="ssh, parallel, proxy, jumphost, socks5, terminal",
)
