import tempfile
import unittest
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from maharat.db import Base
from maharat.errors import NotFound
from maharat.models import DocumentRecord, StoreIndex
from maharat.services import progress_service
from maharat.store import build_store


class ComputeProgressTests(unittest.TestCase):
    def test_bounds_and_completion_for_all_small_catalogs(self):
        for lesson_count in range(0, 25):
            for completed in range(0, lesson_count + 1):
                value = progress_service.compute_progress(lesson_count, completed)
                self.assertGreaterEqual(value, 0)
                self.assertLessEqual(value, 100)
                if lesson_count > 0:
                    self.assertEqual(value == 100, completed == lesson_count, (lesson_count, completed))

    def test_empty_catalog_is_zero(self):
        self.assertEqual(progress_service.compute_progress(0, 0), 0)
        self.assertEqual(progress_service.compute_progress(0, 7), 0)

    def test_rounds_half_up(self):
        self.assertEqual(progress_service.compute_progress(8, 1), 13)
        self.assertEqual(progress_service.compute_progress(200, 1), 1)
        self.assertEqual(progress_service.compute_progress(3, 1), 33)
        self.assertEqual(progress_service.compute_progress(3, 2), 67)

    def test_large_catalog_reaches_100_only_when_complete(self):
        self.assertEqual(progress_service.compute_progress(400, 399), 99)
        self.assertEqual(progress_service.compute_progress(400, 400), 100)

    def test_completed_count_is_clamped(self):
        self.assertEqual(progress_service.compute_progress(4, 9), 100)

    def test_tiers(self):
        self.assertEqual(progress_service.progress_tier(70), 'high')
        self.assertEqual(progress_service.progress_tier(69.9), 'medium')
        self.assertEqual(progress_service.progress_tier(30), 'medium')
        self.assertEqual(progress_service.progress_tier(29.9), 'low')


class ProgressServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_progress_service.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            db.query(DocumentRecord).delete()
            db.query(StoreIndex).delete()
            db.commit()
        finally:
            db.close()
        self.store = build_store(self._session_factory)
        self.store.set_document('lessons', 'l1', {'lessonNumber': 1, 'title': 'One'})
        self.store.set_document('lessons', 'l2', {'lessonNumber': 2, 'title': 'Two'})

    def test_ensure_progress_creates_empty_record_once(self):
        self.assertIsNone(self.store.find_document('studentProgress', 's1'))

        created = progress_service.ensure_progress(self.store, 's1', 'Ali')
        again = progress_service.ensure_progress(self.store, 's1', 'Changed')

        self.assertEqual(created['completedLessons'], [])
        self.assertEqual(again['studentName'], 'Ali')

    def test_ensure_progress_defaults_student_name(self):
        created = progress_service.ensure_progress(self.store, 's1', '  ')

        self.assertEqual(created['studentName'], 'Student')

    def test_mark_lesson_complete_is_idempotent(self):
        progress_service.ensure_progress(self.store, 's1', 'Ali')

        first = progress_service.mark_lesson_complete(self.store, 's1', 'l1')
        second = progress_service.mark_lesson_complete(self.store, 's1', 'l1')

        self.assertEqual(first['status'], 'completed')
        self.assertEqual(second['status'], 'already_completed')
        self.assertEqual(self.store.get_document('studentProgress', 's1')['completedLessons'], ['l1'])

    def test_mark_lesson_complete_without_progress_record(self):
        progress_service.mark_lesson_complete(self.store, 's2', 'l2')

        self.assertEqual(self.store.get_document('studentProgress', 's2')['completedLessons'], ['l2'])

    def test_mark_unknown_lesson_raises_not_found(self):
        with self.assertRaises(NotFound):
            progress_service.mark_lesson_complete(self.store, 's1', 'missing')

    def test_concurrent_completions_are_not_lost(self):
        progress_service.ensure_progress(self.store, 's1', 'Ali')
        stale_snapshot = self.store.get_document('studentProgress', 's1')

        progress_service.mark_lesson_complete(self.store, 's1', 'l1')
        progress_service.mark_lesson_complete(self.store, 's1', 'l2')

        self.assertEqual(stale_snapshot['completedLessons'], [])
        self.assertEqual(sorted(self.store.get_document('studentProgress', 's1')['completedLessons']), ['l1', 'l2'])

    def test_overview_ignores_deleted_lessons_and_sorts_by_percentage(self):
        self.store.set_document('users', 's1', {'name': 'Ali', 'role': 'student', 'email': 'ali@x.com'})
        self.store.set_document('users', 's2', {'name': 'Sara', 'role': 'student', 'email': 'sara@x.com'})
        self.store.set_document('studentProgress', 's1', {'completedLessons': ['l1', 'gone']})
        self.store.set_document('studentProgress', 's2', {'completedLessons': ['l1', 'l2']})

        overview = progress_service.load_progress_overview(self.store)

        self.assertEqual([row['student_id'] for row in overview['students']], ['s2', 's1'])
        ali = overview['students'][1]
        self.assertEqual(ali['completed_count'], 1)
        self.assertEqual(ali['progress'], 50)
        self.assertEqual(ali['tier'], 'medium')
        self.assertEqual(overview['completed_all'], 1)
        self.assertEqual(overview['average_percentage'], 75.0)


if __name__ == '__main__':
    unittest.main()
