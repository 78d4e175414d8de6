from setuptools import setup, find_packages

setup(
    name="pyogcm",
    version="0.1.0",
    author="Bolding-Bruggeman ApS",
    author_email="jorn@bolding-bruggeman.com",
    license="GPL",
    packages=find_packages(include=["pyogcm*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy",
        "xarray",
        "netCDF4",
        "cftime",
        "mpi4py",
        "pyyaml",
    ],
    extras_require={"plot": ["matplotlib"], "test": ["pytest"]},
    zip_safe=False,
    entry_points={
        "console_scripts": [
            "pyogcm-run = pyogcm.run:run",
            "pyogcm-subdiv = pyogcm.subdiv:main",
        ],
    },
)
