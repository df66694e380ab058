"""
Setup configuration for the quickbook package.

This script uses setuptools to package and distribute the quickbook
compiler. It also reads the requirements and long description directly
from external files for ease of maintenance.
"""
from setuptools import find_packages, setup

VERSION = "1.5.0"


def read_requirements():
    """
    Read requirements from requirements.txt file.
    """
    with open("requirements.txt", encoding="UTF-8") as file:
        return list(file)


def get_long_description():
    """
    Read README.md file.
    """
    with open("README.md", encoding="utf8") as file:
        return file.read()


setup(
    name="quickbook",
    description="Compile quickbook markup into BoostBook XML or HTML.",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    license="Boost Software License 1.0",
    version=VERSION,
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=read_requirements(),
    extras_require={
        "test": ["pytest", "hypothesis", "atheris"],
    },
    entry_points={
        "console_scripts": [
            "quickbook=quickbook.cli:cli",
        ]
    },
    python_requires=">=3.11",
)
