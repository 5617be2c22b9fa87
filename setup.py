from setuptools import setup, find_packages

setup(
    name="odh-notebook-operator",
    version="0.1.0",
    description="Kubernetes operator and admission webhook for Open Data Hub Notebook resources",
    author="Red Hat",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.11",
    install_requires=[
        "kopf>=1.37.0",
        "kubernetes>=28.1.0",
        "aiohttp>=3.9.0",
        "tenacity>=8.2.0",
        "jsonpatch>=1.33",
        "cryptography>=42.0.0",
        "urllib3>=1.26.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "odh-notebook-operator=odh_notebook_operator.operator:main",
        ],
    },
)
