import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import maharat.store
from maharat.db import Base
from maharat.models import IndexState, StoreIndex
from maharat.scheduler import refresh_store_indexes_job, run_timed_job, scheduler, start_scheduler
from maharat.store import REQUIRED_INDEXES, build_store


MESSAGES_INDEX = REQUIRED_INDEXES[0].name


class SchedulerJobTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_scheduler.db'
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
            db.query(StoreIndex).delete()
            db.commit()
        finally:
            db.close()
        self.store = build_store(self._session_factory, index_build_seconds=0)
        self.store.indexes.declare(REQUIRED_INDEXES)

    def test_refresh_job_promotes_building_index(self):
        self.store.indexes.rebuild(MESSAGES_INDEX)
        self.assertEqual(self.store.indexes.state(MESSAGES_INDEX), IndexState.BUILDING)

        with patch.object(maharat.store, '_store', self.store):
            with self.assertLogs('maharat.scheduler', level='INFO') as logs:
                refresh_store_indexes_job()

        self.assertEqual(self.store.indexes.state(MESSAGES_INDEX), IndexState.READY)
        self.assertTrue(any('job_end name=refresh_store_indexes status=ok' in line for line in logs.output))

    def test_failed_job_is_logged_and_reraised(self):
        def broken():
            raise RuntimeError('boom')

        with self.assertLogs('maharat.scheduler', level='INFO') as logs:
            with self.assertRaises(RuntimeError):
                run_timed_job('broken', broken)

        self.assertTrue(any('job_failed name=broken' in line for line in logs.output))
        self.assertTrue(any('status=failed' in line for line in logs.output))

    def test_start_scheduler_registers_refresh_job(self):
        with patch.object(scheduler, 'start') as start:
            start_scheduler()
        try:
            job = scheduler.get_job('refresh_store_indexes')
            self.assertIsNotNone(job)
            self.assertIs(job.func, refresh_store_indexes_job)
            start.assert_called_once()
        finally:
            scheduler.remove_job('refresh_store_indexes')


if __name__ == '__main__':
    unittest.main()
