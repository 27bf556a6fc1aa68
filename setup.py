from setuptools import setup, find_packages


setup(
    name="quadcache",
    version="0.1",
    description="A read-only texture cache for 2x2 pixel quads",
    license="BSD",
    python_requires=">=3.8",
    install_requires=["amaranth>=0.5,<0.6"],
    extras_require={
        "wishbone": ["amaranth-soc @ git+https://github.com/amaranth-lang/amaranth-soc"],
        "test": ["pytest"],
    },
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["cli"],
)
