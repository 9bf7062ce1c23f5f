from docextract.config.docextract_config import DocExtractConfig, setup_logging

__all__ = ['DocExtractConfig', 'setup_logging']
