import logging

from maharat.db import Base, engine
from maharat.store import REQUIRED_INDEXES, get_store


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


def main():
    Base.metadata.create_all(bind=engine)
    indexes = get_store().indexes
    if indexes is None:
        logger.info('Bootstrap skipped: no index registry')
        return
    declared = indexes.declare(REQUIRED_INDEXES)
    promoted = indexes.refresh()
    logger.info('Bootstrap executed: declared=%s ready=%s', declared, promoted)


if __name__ == '__main__':
    main()
