from setuptools import setup


setup(
    name="stocktake",
    version="0.3.0",
    description="Column mapping detection and running aggregation for messy inventory spreadsheets",
    packages=["stocktake"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "pyyaml",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "stocktake=stocktake.cli:main",
        ]
    },
)
