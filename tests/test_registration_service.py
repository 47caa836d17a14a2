import tempfile
import unittest
from pathlib import Path

from freezegun import freeze_time
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from maharat.db import Base
from maharat.errors import AuthError, EmailInUse, InvalidCredentials, NotFound, TeacherAlreadyExists, ValidationError
from maharat.models import DocumentRecord, IdentityAccount, StoreIndex
from maharat.services import registration_service, student_service
from maharat.services.identity_service import IdentityService, IdentityWatcher, validate_session_token
from maharat.store import build_store


class RegistrationServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_registration_service.db'
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
            db.query(IdentityAccount).delete()
            db.commit()
        finally:
            db.close()
        self.store = build_store(self._session_factory)
        self.identity = IdentityService(self._session_factory)

    def _account_count(self):
        db = self._session_factory()
        try:
            return db.query(IdentityAccount).count()
        finally:
            db.close()

    def test_first_teacher_registration_sets_flag(self):
        self.assertFalse(registration_service.teacher_exists(self.store))

        session = registration_service.register(
            self.store, self.identity, 'Teacher@Example.com', 'secret1', 'teacher', 'Ustadh Khalid'
        )

        self.assertEqual(session['role'], 'teacher')
        self.assertEqual(session['email'], 'teacher@example.com')
        self.assertTrue(registration_service.teacher_exists(self.store))
        flag = self.store.get_document('settings', 'teacher')
        self.assertEqual(flag['teacherId'], session['user_id'])
        user = self.store.get_document('users', session['user_id'])
        self.assertEqual(user['name'], 'Ustadh Khalid')
        self.assertTrue(user['createdAt'].endswith('Z'))

    def test_second_teacher_is_rejected_before_any_account_is_created(self):
        registration_service.register_teacher(self.store, self.identity, 't1@example.com', 'secret1', 'First')

        with self.assertRaises(TeacherAlreadyExists):
            registration_service.register_teacher(self.store, self.identity, 't2@example.com', 'secret1', 'Second')

        self.assertEqual(self._account_count(), 1)
        self.assertEqual(len(self.store.list_collection('users')), 1)
        with self.assertRaises(InvalidCredentials):
            self.identity.authenticate('t2@example.com', 'secret1')

    def test_students_can_register_freely(self):
        registration_service.register(self.store, self.identity, 'a@example.com', 'secret1', 'student', 'Ali')
        registration_service.register(self.store, self.identity, 'b@example.com', 'secret1', 'student', 'Sara')

        self.assertEqual(len(student_service.list_students(self.store)), 2)
        self.assertFalse(registration_service.teacher_exists(self.store))

    def test_registration_validates_input(self):
        with self.assertRaises(ValidationError):
            registration_service.register(self.store, self.identity, 'a@example.com', 'secret1', 'admin', 'Ali')
        with self.assertRaises(ValidationError):
            registration_service.register(self.store, self.identity, 'not-an-email', 'secret1', 'student', 'Ali')
        with self.assertRaises(ValidationError):
            registration_service.register(self.store, self.identity, 'a@example.com', '123', 'student', 'Ali')
        with self.assertRaises(ValidationError):
            registration_service.register(self.store, self.identity, 'a@example.com', 'secret1', 'student', '  ')

        self.assertEqual(self._account_count(), 0)

    def test_duplicate_email_is_rejected(self):
        registration_service.register_student(self.store, self.identity, 'a@example.com', 'secret1', 'Ali')

        with self.assertRaises(EmailInUse):
            registration_service.register_student(self.store, self.identity, 'A@example.com ', 'secret1', 'Ali 2')

    def test_login_and_logout(self):
        registration_service.register_student(self.store, self.identity, 'a@example.com', 'secret1', 'Ali')

        session = registration_service.login(self.store, self.identity, 'a@example.com', 'secret1')
        self.assertEqual(validate_session_token(session['token'])['role'], 'student')

        registration_service.logout(session['token'])
        self.assertIsNone(validate_session_token(session['token']))

    def test_login_rejects_bad_password(self):
        registration_service.register_student(self.store, self.identity, 'a@example.com', 'secret1', 'Ali')

        with self.assertRaises(InvalidCredentials):
            registration_service.login(self.store, self.identity, 'a@example.com', 'wrong-password')

    def test_login_without_profile_is_rejected(self):
        self.identity.create_account('orphan@example.com', 'secret1')

        with self.assertRaises(AuthError):
            registration_service.login(self.store, self.identity, 'orphan@example.com', 'secret1')

    def test_session_token_expires(self):
        registration_service.register_student(self.store, self.identity, 'a@example.com', 'secret1', 'Ali')
        with freeze_time('2026-03-01 08:00:00') as frozen:
            session = registration_service.login(self.store, self.identity, 'a@example.com', 'secret1')
            self.assertIsNotNone(validate_session_token(session['token']))
            frozen.tick(13 * 3600)
            self.assertIsNone(validate_session_token(session['token']))

    def test_tampered_token_is_rejected(self):
        session = registration_service.register(self.store, self.identity, 'a@example.com', 'secret1', 'student', 'Ali')
        header, payload, signature = session['token'].split('.')

        self.assertIsNone(validate_session_token(f'{header}.{payload}x.{signature}'))
        self.assertIsNone(validate_session_token('garbage'))
        self.assertIsNone(validate_session_token(None))

    def test_identity_watcher_reports_current_and_later_changes(self):
        session = registration_service.register(self.store, self.identity, 'a@example.com', 'secret1', 'student', 'Ali')
        seen = []

        watcher = IdentityWatcher(session['token'])
        unsubscribe = watcher.on_identity_change(seen.append)
        watcher.sign_out()
        unsubscribe()
        watcher.sign_in(session['token'])

        self.assertEqual(seen[0]['user_id'], session['user_id'])
        self.assertIsNone(seen[1])
        self.assertEqual(len(seen), 2)
        self.assertIsNone(watcher.identity)

    def test_find_teacher(self):
        self.assertIsNone(registration_service.find_teacher(self.store))
        registration_service.register_teacher(self.store, self.identity, 't@example.com', 'secret1', 'Khalid')

        self.assertEqual(registration_service.find_teacher(self.store)['name'], 'Khalid')


class StudentServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_student_service.db'
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
            db.query(IdentityAccount).delete()
            db.commit()
        finally:
            db.close()
        self.store = build_store(self._session_factory)
        self.identity = IdentityService(self._session_factory)

    def test_add_student_requires_all_fields(self):
        with self.assertRaises(ValidationError):
            student_service.add_student(self.store, self.identity, 'Ali', '', 'secret1')

        student = student_service.add_student(self.store, self.identity, 'Ali', 'ali@example.com', 'secret1')
        self.assertEqual(student['role'], 'student')

    def test_update_student_changes_profile_and_login_email(self):
        student = student_service.add_student(self.store, self.identity, 'Ali', 'ali@example.com', 'secret1')

        updated = student_service.update_student(self.store, self.identity, student['id'], 'Ali H', 'ali.h@example.com')

        self.assertEqual(updated['name'], 'Ali H')
        self.assertEqual(self.identity.authenticate('ali.h@example.com', 'secret1'), student['id'])

    def test_delete_student_removes_profile_progress_and_account(self):
        student = student_service.add_student(self.store, self.identity, 'Ali', 'ali@example.com', 'secret1')
        self.store.set_document('studentProgress', student['id'], {'completedLessons': []})

        student_service.delete_student(self.store, self.identity, student['id'])

        self.assertIsNone(self.store.find_document('users', student['id']))
        self.assertIsNone(self.store.find_document('studentProgress', student['id']))
        with self.assertRaises(InvalidCredentials):
            self.identity.authenticate('ali@example.com', 'secret1')

    def test_teacher_is_not_a_student(self):
        teacher = registration_service.register_teacher(self.store, self.identity, 't@example.com', 'secret1', 'T')

        with self.assertRaises(NotFound):
            student_service.get_student(self.store, teacher['id'])


if __name__ == '__main__':
    unittest.main()
