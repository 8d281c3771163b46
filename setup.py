from setuptools import setup, find_packages

setup(
    name="crossvenue",
    version="0.1",
    packages=find_packages(include=["crossvenue", "crossvenue.*"]),
    package_data={"crossvenue": ["config/*.yaml"]},
    python_requires=">=3.9",
    install_requires=[
        "pandas~=2.2.2",
        "ccxt~=4.4.14",
        "PyYAML~=6.0.1",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    test_suite="crossvenue/tests",
)
