#!/usr/bin/env python3
"""
Setup script for pointfit
"""

from setuptools import setup, find_packages
import os

HERE = os.path.abspath(os.path.dirname(__file__))


# Read the README file
def read_readme():
    with open(os.path.join(HERE, "README.md"), "r", encoding="utf-8") as fh:
        return fh.read()


# Read requirements
def read_requirements():
    with open(os.path.join(HERE, "requirements.txt"), "r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]


setup(
    name="pointfit",
    version="1.0.0",
    author="pointfit developers",
    description="Rigid point cloud registration (ICP) and robust model fitting (RANSAC)",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Image Recognition",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
    install_requires=read_requirements(),
    extras_require={
        "io": ["open3d"],
        "dev": ["pytest"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "pointfit=pointfit.cli:main",
        ],
    },
    include_package_data=True,
    keywords="point cloud, registration, ICP, RANSAC, robust estimation, 3D",
)
