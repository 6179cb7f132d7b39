from setuptools import setup

setup(
    name="adaptive-banding",
    version="0.1.0",
    description="Numba-accelerated Python implementation of adaptive banded Viterbi alignment of nanopore events to sequence k-mers",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    py_modules=["adaptive_banding"],
    install_requires=["numba", "numpy", "colorama"],
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
    extras_require={
        "dev": ["pytest", "pytest-repeat"],
        "test": ["pytest", "pytest-repeat"],
    },
    entry_points={
        "console_scripts": [
            "adaptive-banding=adaptive_banding:main",
        ],
    },
)
