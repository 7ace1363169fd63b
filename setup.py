from setuptools import setup, find_packages

setup(
    name="hazard_exposure",
    version="1.0.0",
    packages=find_packages(include=["hazard_exposure", "hazard_exposure.*"]),
    package_data={"hazard_exposure.config": ["config.yaml"]},
    install_requires=[
        "numpy",
        "pandas",
        "rasterio",
        "affine<3",
        "geopandas",
        "shapely",
        "pyyaml",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": ["hazard-exposure=hazard_exposure.main:main"],
    },
)
