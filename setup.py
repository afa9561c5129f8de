import sys
from setuptools import setup

if sys.version_info < (3, 8):
    sys.exit("Sorry, Python < 3.8 is not supported")

setup(
    name="metad_bias",
    packages=[
        "metad_bias",
        "metad_bias.sampling_tools",
        "metad_bias.interface",
    ],
    version="1.0.0",
    license="MIT",
    description="Metadynamics hill deposition and bias evaluation on collective variables",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    keywords=[
        "computational chemistry",
        "molecular dynamics",
        "free energy",
        "metadynamics",
    ],
    install_requires=[
        "torch>=1.10.2",
        "numpy>=1.19.5",
        "scipy>=1.7.0",
    ],
    extras_require={
        "mpi": ["mpi4py>=3.0"],
        "test": ["pytest"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.8",
    ],
    zip_safe=False,
)
