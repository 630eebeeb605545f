"""
Pharmaceutical Quality Management System: record lifecycle engine
"""

from .auth import PasswordVerifier, User, UserDirectory
from .audit_logger import AuditLogger
from .config import AppConfig, load_config
from .engine import QMSEngine
from .errors import CollaboratorUnavailable, ErrorKind, QMSError, Result, StorageFailure
from .signature import Confirmed, SignatureGate, SignatureMeaning
from .storage import FileStore, MemoryStore, SessionStateStore


__version__ = "2.0.0"
__author__ = "Quality Management Team"

__all__ = [
    'AppConfig',
    'AuditLogger',
    'CollaboratorUnavailable',
    'Confirmed',
    'ErrorKind',
    'FileStore',
    'MemoryStore',
    'PasswordVerifier',
    'QMSEngine',
    'QMSError',
    'Result',
    'SessionStateStore',
    'SignatureGate',
    'SignatureMeaning',
    'StorageFailure',
    'User',
    'UserDirectory',
    'load_config',
]
