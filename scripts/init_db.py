from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from maharat.db import Base, engine
from maharat.services.identity_service import get_identity_service
from maharat.services.lesson_service import create_lesson, list_lessons
from maharat.services.registration_service import register_student, register_teacher, teacher_exists
from maharat.services.settings_service import get_platform_settings
from maharat.store import REQUIRED_INDEXES, get_store


Base.metadata.create_all(bind=engine)

store = get_store()
identity = get_identity_service()
store.indexes.declare(REQUIRED_INDEXES)
store.indexes.refresh()
get_platform_settings(store)

if not teacher_exists(store):
    register_teacher(store, identity, 'teacher@maharat.local', 'teacher123', 'Ustadh Khalid')
    for name, email in (('Ali', 'ali@maharat.local'), ('Sara', 'sara@maharat.local'), ('Omar', 'omar@maharat.local')):
        register_student(store, identity, email, 'student123', name)

if not list_lessons(store):
    create_lesson(store, 1, 'Introduction', video_url='https://www.youtube.com/watch?v=dQw4w9WgXcQ')
    create_lesson(store, 2, 'Reading practice', pdf_url='https://example.com/reading.pdf')
    create_lesson(store, 3, 'Weekly quiz', quiz_url='https://forms.gle/example')

print('DB initialized with sample data.')
