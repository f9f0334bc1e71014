"""Packaging for libretasks.

Pure Python: the model parsers read flatbuffers with ``struct`` and the
post-processors run in NumPy, so there is nothing to compile.
``flatbuffers`` is needed by :mod:`libretasks.tflite_builder`.
"""

from setuptools import find_packages, setup

setup(
    name="libretasks",
    version="0.1.0",
    description="Model resource parsing and post-processing for on-device perception tasks",
    packages=find_packages(include=["libretasks", "libretasks.*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "flatbuffers",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
