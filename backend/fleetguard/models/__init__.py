from .tenancy import Company
from .auth import User, Membership, PermissionGrant, SessionToken, new_identity
from .verification import VerificationToken
from .audit import AuditRecord

__all__ = [
    'Company',
    'User', 'Membership', 'PermissionGrant', 'SessionToken', 'new_identity',
    'VerificationToken',
    'AuditRecord',
]
