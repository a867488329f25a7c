from setuptools import setup, find_packages

setup(
    name="statistical-arbitrage-engine",
    version="1.0.0",
    description="Statistical arbitrage paper-trading engine with Johansen cointegration and Kalman hedge ratios",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "numpy>=1.21.0",
        "pandas>=1.3.0",
        "scipy>=1.7.0",
        "statsmodels>=0.13.0,<0.15",
        "pykalman>=0.9.5",
        "PyYAML>=5.4",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.8",
)
