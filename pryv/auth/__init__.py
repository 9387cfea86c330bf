from .states import AuthState

__all__ = ['AuthState']
