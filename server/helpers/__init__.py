from .DateTimeSerializer import DateTimeSerializerVisitor
from .UserCodeGenerator import UserCodeGenerator
from .CredentialStrategy import CredentialStrategy

__all__ = [
    'DateTimeSerializerVisitor',
    'UserCodeGenerator',
    'CredentialStrategy'
]
