from setuptools import find_packages, setup

setup(
    name="multiverse",
    version="0.1.0",
    packages=find_packages(include=["multiverse", "multiverse.*"]),
    entry_points={
        "console_scripts": [
            "multiverse=multiverse.cli:main",
        ],
    },
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.10",
    description="Multiverse — branchable, replayable timelines for cellular automaton boards",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "Topic :: Scientific/Engineering :: Artificial Life",
        "Programming Language :: Python :: 3.12",
    ],
)
