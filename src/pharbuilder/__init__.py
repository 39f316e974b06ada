"""
This package builds Composer-managed PHP projects into single-file,
self-executing PHAR archives.
"""

from .models import Compression, SignatureAlgorithm, SourceSpec
from .packaging.orchestrator import BuildOrchestrator
from .packaging.reader import PharReader
from .packaging.writer import PharWriter

__all__ = [
    "BuildOrchestrator",
    "Compression",
    "PharReader",
    "PharWriter",
    "SignatureAlgorithm",
    "SourceSpec",
]
