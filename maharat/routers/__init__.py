from maharat.routers import auth, dashboard, lessons, messages, progress, settings, students

__all__ = [
    'auth',
    'dashboard',
    'lessons',
    'messages',
    'progress',
    'settings',
    'students',
]
