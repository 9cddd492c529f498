import setuptools

setuptools.setup(
    name="mlpca",
    version="2026.0.1",
    description="Maximum likelihood principal component analysis (MLPCA) for measurement data with independent, "
                "heteroscedastic errors. Fits the maximum likelihood rank-p subspace of a data matrix, given the "
                "standard deviation of every measurement, with an alternating least squares algorithm.",
    packages=setuptools.find_namespace_packages(include=["mlpca", "mlpca.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "scipy",
        "pandas",
        "tqdm",
        "click",
        "psutil",
        "plotly",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "mlpca=mlpca.cli.mlpca_cli:mlpca_cli",
        ],
    },
)
