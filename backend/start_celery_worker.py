#!/usr/bin/env python3
"""Start the CSV import worker with the configured concurrency."""

import sys
import warnings

# Containers commonly run as root
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from fintrack.core.config import get_settings
from fintrack.workers.celery_app import celery_app

if __name__ == '__main__':
    settings = get_settings()
    argv = [
        'worker',
        f'--loglevel={settings.log_level.lower()}',
        '--queues=imports',
        '--pool=prefork',
        f'--concurrency={settings.import_worker_concurrency}',
        '--without-mingle',
        '--without-gossip',
    ] + sys.argv[1:]

    celery_app.worker_main(argv=argv)
