#!/usr/bin/env python
"""
Setup script for fiberprocess: fiber bundle warping, tensor statistics and voxelization.
"""

from setuptools import setup, find_packages
import os

# Read the README file
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read version from __init__.py
def get_version():
    """Get version from __init__.py file."""
    version_file = os.path.join("fiberprocess", "__init__.py")
    with open(version_file, "r", encoding="utf-8") as f:
        for line in f:
            if line.startswith("__version__"):
                return line.split("=")[1].strip().strip('"').strip("'")
    return "1.0.0"

setup(
    name="fiberprocess",
    version=get_version(),
    author="NeuroLib Team",
    description="Warp tractography fiber bundles through deformation fields, resample DTI statistics along fibers and voxelize them",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Intended Audience :: Healthcare Industry",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
        "Topic :: Scientific/Engineering :: Image Processing",
        "Environment :: Console",
    ],
    keywords=[
        "tractography", "neuroimaging", "nifti", "trk", "dti", "diffusion-tensor",
        "white-matter", "streamlines", "fiber-tracking", "dipy", "registration",
        "deformation-field", "voxelization",
    ],
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.18.0",
        "nibabel>=3.0.0",
        "scipy>=1.5.0",
        "dipy>=1.4.0",
        "joblib>=1.0.0",
        "tqdm>=4.50.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov>=2.0",
            "black>=21.0",
            "flake8>=3.8",
            "isort>=5.0",
        ],
        "test": [
            "pytest>=6.0",
            "pytest-cov>=2.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fiberprocess=fiberprocess.main:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
    platforms=["any"],
    license="MIT",
)
