"""
Authentication application.

Email-based users with a marketplace role (client, expert, admin) and the
client store used by payments (UserService).

Usage:
    from authentication.models import User, UserRole
    from authentication.services import UserService
"""
