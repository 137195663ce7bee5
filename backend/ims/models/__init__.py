from .documents import MaterialRequest, RequestCounter
from .catalog import Item, Project, Engineer
from .auth import RoleProfile
from .security import SecurityEvent

__all__ = [
    'MaterialRequest', 'RequestCounter',
    'Item', 'Project', 'Engineer',
    'RoleProfile',
    'SecurityEvent',
]
