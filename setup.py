"""
setup.py for DocExtract.
"""

from setuptools import setup, find_packages

setup(
    name="docextract",
    version="0.1.0",
    description="Adaptive field extraction and rule-based template mapping for business documents",
    packages=find_packages(include=['docextract', 'docextract.*']),
    package_data={'docextract.config': ['default_config.yaml']},
    python_requires='>=3.9',
    install_requires=[
        'pdfminer.six',
        'pyyaml',
        'sqlalchemy>=2.0',
        'pydantic>=2.0',
        'click',
    ],
    extras_require={
        'ocr': [
            'pytesseract',
            'pdf2image',
            'Pillow',
        ],
        'tests': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'docextract=docextract.cli:cli',
        ],
    },
)
