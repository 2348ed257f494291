from .profile import StudentProfile

__all__ = ["StudentProfile"]
