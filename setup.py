# -*- coding: utf-8 -*-

"""setup.py"""

from setuptools import setup, find_namespace_packages


def read_content(filepath):
    with open(filepath) as fobj:
        return fobj.read()


classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: Implementation :: CPython",
]


def get_requirements(filename="requirements.txt"):
    """Read a requirements file, skipping blank lines and comments."""
    with open(filename) as f:
        reqs = f.read().splitlines()
    return [req for req in reqs if req.strip() and not req.startswith("#")]


setup(
    name="nixlib-oci",
    version="0.1.0",
    description="Container image publishing tools for the HOPR Nix library",
    long_description=read_content("README.rst"),
    long_description_content_type="text/x-rst",
    url="https://github.com/hoprnet/nix-lib",
    classifiers=classifiers,
    python_requires=">=3.8",
    packages=find_namespace_packages(include=["nixlib.*"]),
    package_data={"nixlib._oci": ["data/*.sh"]},
    include_package_data=True,
    install_requires=get_requirements(),
    extras_require={"test": get_requirements("test-requirements.txt")},
    entry_points={
        "console_scripts": [
            "nixlib-build-manifest = nixlib._oci.manifest_builder:build_manifest_main",
            "nixlib-push-manifest = nixlib._oci.push_manifest:push_manifest_main",
            "nixlib-multi-arch-upload = nixlib._oci.push_manifest:multi_arch_upload_main",
            "nixlib-docker-upload = nixlib._oci.upload_image:docker_upload_main",
            "nixlib-trivy-scan = nixlib._oci.security_scanner:trivy_scan_main",
            "nixlib-download-trivy-db = nixlib._oci.security_scanner:download_trivy_db_main",
            "nixlib-sbom = nixlib._oci.sbom:sbom_main",
        ],
    },
)
