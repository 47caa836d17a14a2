import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from maharat.db import Base
from maharat.errors import StoreUnavailable
from maharat.models import DocumentRecord, IdentityAccount, StoreIndex
from maharat.routers import auth, lessons, messages, progress, settings as settings_router, students
from maharat.services import messaging_service
from maharat.services.identity_service import IdentityService, get_identity_service
from maharat.store import REQUIRED_INDEXES, build_store, get_store


MESSAGES_INDEX = REQUIRED_INDEXES[0].name


class PlatformApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_api.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        cls.app = FastAPI()
        for module in (auth, lessons, progress, settings_router, students, messages):
            cls.app.include_router(module.router)
        cls.client = TestClient(cls.app)

    @classmethod
    def tearDownClass(cls):
        cls.app.dependency_overrides.clear()
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
        self.store = build_store(self._session_factory, index_build_seconds=0)
        self.store.indexes.declare(REQUIRED_INDEXES)
        self.store.indexes.refresh()
        self.identity = IdentityService(self._session_factory)
        self.app.dependency_overrides[get_store] = lambda: self.store
        self.app.dependency_overrides[get_identity_service] = lambda: self.identity
        self.client.cookies.clear()

        self.teacher = self._register('teacher@example.com', 'Ustadh Khalid', 'teacher')
        self.student = self._register('ali@example.com', 'Ali', 'student')

    def _register(self, email, name, role):
        response = self.client.post(
            '/auth/register',
            json={'email': email, 'password': 'secret1', 'name': name, 'role': role},
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.client.cookies.clear()
        return response.json()

    @staticmethod
    def _auth(session):
        return {'Authorization': f"Bearer {session['token']}"}

    def test_register_sets_session_cookie(self):
        response = self.client.post(
            '/auth/register',
            json={'email': 'sara@example.com', 'password': 'secret1', 'name': 'Sara', 'role': 'student'},
        )

        self.assertEqual(response.status_code, 201)
        self.assertIn('auth_session', response.cookies)
        me = self.client.get('/auth/me')
        self.assertEqual(me.json()['user']['name'], 'Sara')
        self.client.cookies.clear()

    def test_second_teacher_gets_conflict(self):
        response = self.client.post(
            '/auth/register',
            json={'email': 'other@example.com', 'password': 'secret1', 'name': 'Other', 'role': 'teacher'},
        )

        self.assertEqual(response.status_code, 409)
        self.assertTrue(self.client.get('/auth/teacher-status').json()['teacher_exists'])

    def test_login_and_logout(self):
        bad = self.client.post('/auth/login', json={'email': 'ali@example.com', 'password': 'nope-nope'})
        self.assertEqual(bad.status_code, 401)

        response = self.client.post('/auth/login', json={'email': 'ali@example.com', 'password': 'secret1'})
        self.assertEqual(response.status_code, 200)
        session = response.json()
        self.client.cookies.clear()

        self.assertEqual(self.client.get('/auth/me', headers=self._auth(session)).status_code, 200)
        self.client.post('/auth/logout', headers=self._auth(session))
        self.client.cookies.clear()
        self.assertEqual(self.client.get('/auth/me', headers=self._auth(session)).status_code, 401)

    def test_lesson_management_is_teacher_only(self):
        payload = {'lesson_number': 1, 'title': 'Intro', 'video_url': 'https://youtu.be/x'}

        denied = self.client.post('/api/lessons', json=payload, headers=self._auth(self.student))
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(self.client.get('/api/lessons').status_code, 401)

        created = self.client.post('/api/lessons', json=payload, headers=self._auth(self.teacher))
        self.assertEqual(created.status_code, 201)
        lesson_id = created.json()['lesson']['id']

        invalid = self.client.post(
            '/api/lessons',
            json={'lesson_number': 'one', 'title': 'Bad'},
            headers=self._auth(self.teacher),
        )
        self.assertEqual(invalid.status_code, 400)

        listing = self.client.get('/api/lessons', headers=self._auth(self.student))
        self.assertEqual([row['id'] for row in listing.json()['items']], [lesson_id])

        resource = self.client.get(f'/api/lessons/{lesson_id}/resources/video', headers=self._auth(self.student))
        self.assertEqual(resource.json()['url'], 'https://youtu.be/x')
        missing = self.client.get(f'/api/lessons/{lesson_id}/resources/pdf', headers=self._auth(self.student))
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()['detail'], 'This link is not available yet')

    def test_student_progress_flow(self):
        lesson = self.client.post(
            '/api/lessons',
            json={'lesson_number': 1, 'title': 'Intro'},
            headers=self._auth(self.teacher),
        ).json()['lesson']
        self.client.post('/api/lessons', json={'lesson_number': 2, 'title': 'Next'}, headers=self._auth(self.teacher))

        before = self.client.get('/api/progress/me', headers=self._auth(self.student)).json()
        self.assertEqual(before['progress'], 0)

        done = self.client.post(f"/api/progress/me/lessons/{lesson['id']}/complete", headers=self._auth(self.student))
        again = self.client.post(f"/api/progress/me/lessons/{lesson['id']}/complete", headers=self._auth(self.student))

        self.assertEqual(done.json()['status'], 'completed')
        self.assertEqual(again.json()['status'], 'already_completed')
        self.assertEqual(again.json()['summary']['progress'], 50)

        overview = self.client.get('/api/progress/overview', headers=self._auth(self.teacher)).json()
        self.assertEqual(overview['students'][0]['progress'], 50)
        self.assertEqual(
            self.client.get('/api/progress/overview', headers=self._auth(self.student)).status_code,
            403,
        )

    def test_student_message_defaults_to_teacher(self):
        response = self.client.post('/api/messages', json={'text': 'Salam'}, headers=self._auth(self.student))
        self.assertEqual(response.status_code, 201)

        inbox = self.client.get('/api/messages', headers=self._auth(self.teacher)).json()
        self.assertEqual(inbox['unread_count'], 1)
        self.assertEqual(inbox['notifications'][0]['message'], 'Salam')
        self.assertEqual(inbox['threads'][0]['participantId'], self.student['user_id'])

        read = self.client.post(
            f"/api/messages/conversation/{self.student['user_id']}/read",
            headers=self._auth(self.teacher),
        )
        self.assertEqual(len(read.json()['marked']), 1)
        inbox = self.client.get('/api/messages', headers=self._auth(self.teacher)).json()
        self.assertEqual(inbox['unread_count'], 0)

    def test_blank_message_is_rejected(self):
        response = self.client.post(
            '/api/messages',
            json={'text': '   ', 'receiver_id': self.teacher['user_id']},
            headers=self._auth(self.student),
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.store.list_collection('messages'), [])

    def test_student_cannot_message_another_student(self):
        sara = self._register('sara@example.com', 'Sara', 'student')

        response = self.client.post(
            '/api/messages',
            json={'text': 'hi', 'receiver_id': sara['user_id']},
            headers=self._auth(self.student),
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.store.list_collection('messages'), [])

    def test_teacher_message_requires_existing_student(self):
        missing = self.client.post(
            '/api/messages',
            json={'text': 'hi', 'receiver_id': 'no-such-user'},
            headers=self._auth(self.teacher),
        )
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(self.store.list_collection('messages'), [])

        sent = self.client.post(
            '/api/messages',
            json={'text': 'hi', 'receiver_id': self.student['user_id']},
            headers=self._auth(self.teacher),
        )
        self.assertEqual(sent.status_code, 201)
        message = self.store.get_document('messages', sent.json()['message_id'])
        self.assertEqual(message['receiverId'], self.student['user_id'])

    def test_mass_send_defaults_to_all_students(self):
        sara = self._register('sara@example.com', 'Sara', 'student')

        response = self.client.post('/api/messages/mass', json={'text': 'Exam on Sunday'}, headers=self._auth(self.teacher))

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(sorted(response.json()['sent']), sorted([self.student['user_id'], sara['user_id']]))
        denied = self.client.post('/api/messages/mass', json={'text': 'x'}, headers=self._auth(self.student))
        self.assertEqual(denied.status_code, 403)

    def test_mass_send_partial_failure_returns_multi_status(self):
        sara = self._register('sara@example.com', 'Sara', 'student')
        original_send = messaging_service.send_message

        def flaky_send(store, sender_id, receiver_id, text, *, mass=False):
            if receiver_id == sara['user_id']:
                raise StoreUnavailable('write failed')
            return original_send(store, sender_id, receiver_id, text, mass=mass)

        with patch.object(messaging_service, 'send_message', side_effect=flaky_send):
            response = self.client.post(
                '/api/messages/mass',
                json={'text': 'Exam on Sunday', 'student_ids': [self.student['user_id'], sara['user_id']]},
                headers=self._auth(self.teacher),
            )

        self.assertEqual(response.status_code, 207)
        self.assertEqual(response.json()['failed_ids'], [sara['user_id']])
        self.assertIn(self.student['user_id'], response.json()['sent'])

    def test_delete_messages_only_for_participants(self):
        message_id = messaging_service.send_message(self.store, self.student['user_id'], self.teacher['user_id'], 'hi')
        outsider = self._register('omar@example.com', 'Omar', 'student')

        denied = self.client.post(
            '/api/messages/delete',
            json={'message_ids': [message_id]},
            headers=self._auth(outsider),
        )
        self.assertEqual(denied.status_code, 404)

        deleted = self.client.post(
            '/api/messages/delete',
            json={'message_ids': [message_id]},
            headers=self._auth(self.teacher),
        )
        self.assertEqual(deleted.json()['deleted'], 1)
        self.assertEqual(self.client.get('/api/messages', headers=self._auth(self.teacher)).json()['items'], [])

    def test_inbox_returns_503_while_index_is_building(self):
        self.store.indexes.rebuild(MESSAGES_INDEX)

        response = self.client.get('/api/messages', headers=self._auth(self.teacher))

        self.assertEqual(response.status_code, 503)

    def test_settings_and_link_lists(self):
        current = self.client.get('/api/settings', headers=self._auth(self.student))
        self.assertEqual(current.json()['siteName'], 'Maharat Learning Platform')

        denied = self.client.put('/api/settings', json={'site_name': 'X'}, headers=self._auth(self.student))
        self.assertEqual(denied.status_code, 403)

        saved = self.client.put('/api/settings', json={'site_name': 'Academy'}, headers=self._auth(self.teacher))
        self.assertEqual(saved.json()['settings']['siteName'], 'Academy')

        link = self.client.post(
            '/api/settings/final-exams',
            json={'name': 'Final', 'url': 'https://forms.gle/final'},
            headers=self._auth(self.teacher),
        ).json()['link']
        resource = self.client.get(f"/api/settings/final-exams/{link['id']}/resource", headers=self._auth(self.student))
        self.assertTrue(resource.json()['external'])
        self.assertEqual(self.client.get('/api/settings/unknown', headers=self._auth(self.teacher)).status_code, 404)

    def test_teacher_manages_students(self):
        created = self.client.post(
            '/api/students',
            json={'name': 'Sara', 'email': 'sara@example.com', 'password': 'secret1'},
            headers=self._auth(self.teacher),
        )
        self.assertEqual(created.status_code, 201)
        student_id = created.json()['student']['id']

        duplicate = self.client.post(
            '/api/students',
            json={'name': 'Sara', 'email': 'sara@example.com', 'password': 'secret1'},
            headers=self._auth(self.teacher),
        )
        self.assertEqual(duplicate.status_code, 409)

        updated = self.client.put(
            f'/api/students/{student_id}',
            json={'name': 'Sara A', 'email': 'sara.a@example.com'},
            headers=self._auth(self.teacher),
        )
        self.assertEqual(updated.json()['student']['email'], 'sara.a@example.com')

        self.assertEqual(self.client.delete(f'/api/students/{student_id}', headers=self._auth(self.teacher)).status_code, 200)
        names = [row['name'] for row in self.client.get('/api/students', headers=self._auth(self.teacher)).json()['items']]
        self.assertEqual(names, ['Ali'])


if __name__ == '__main__':
    unittest.main()
