import sys

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from maharat.db import engine
from maharat.models import IndexState
from maharat.scheduler import scheduler, start_scheduler, stop_scheduler
from maharat.services.settings_service import get_platform_settings
from maharat.store import REQUIRED_INDEXES, get_store


REQUIRED_JOB_IDS = ('refresh_store_indexes',)
PROBE_COLLECTION = '_healthcheck'

OK = '\033[32mOK  \033[0m'
BAD = '\033[31mFAIL\033[0m'


def probe_document_store():
    store = get_store()
    store.set_document(PROBE_COLLECTION, 'probe', {'alive': True})
    try:
        if not store.get_document(PROBE_COLLECTION, 'probe').get('alive'):
            raise RuntimeError('probe document did not round-trip')
    finally:
        store.delete_document(PROBE_COLLECTION, 'probe')
    return 'read + write ok'


def probe_migrations():
    heads = ScriptDirectory.from_config(Config('alembic.ini')).get_heads()
    with engine.connect() as connection:
        revision = MigrationContext.configure(connection).get_current_revision()
    if revision is None:
        raise RuntimeError('database is unversioned, run `alembic upgrade head`')
    if revision not in heads:
        raise RuntimeError(f'database at {revision}, expected one of {heads}')
    return f'revision={revision}'


def probe_scheduler():
    start_scheduler()
    try:
        job_ids = sorted(job.id for job in scheduler.get_jobs())
    finally:
        stop_scheduler()
    absent = [job_id for job_id in REQUIRED_JOB_IDS if job_id not in job_ids]
    if absent:
        raise RuntimeError(f'jobs not registered: {absent}')
    return ', '.join(job_ids)


def probe_indexes():
    indexes = get_store().indexes
    states = {definition.name: indexes.state(definition.name) for definition in REQUIRED_INDEXES}
    building = [name for name, state in states.items() if state != IndexState.READY]
    if building:
        raise RuntimeError(f'still building: {building}')
    return f'{len(states)} ready'


def probe_settings():
    return f"siteName={get_platform_settings(get_store()).get('siteName')}"


PROBES = (
    ('document store', probe_document_store),
    ('migrations', probe_migrations),
    ('scheduler', probe_scheduler),
    ('store indexes', probe_indexes),
    ('platform settings', probe_settings),
)


def main():
    failures = 0
    for label, probe in PROBES:
        try:
            detail = probe()
        except Exception as exc:
            failures += 1
            print(f'{BAD} {label}: {exc}')
        else:
            print(f'{OK} {label}: {detail}')
    sys.exit(1 if failures else 0)


if __name__ == '__main__':
    main()
