#!/usr/bin/env python3
"""Scheduler and API server runner"""
import os

# This process owns the scheduler
os.environ.setdefault('SCHEDULER_WORKER', 'true')

from snapkeeper import create_app

if __name__ == '__main__':
    app = create_app(os.environ.get('SNAPKEEPER_ENV', 'development'))

    # Bind to localhost: the API is unauthenticated
    port = int(os.environ.get('PORT', 5000))
    app.run(host='127.0.0.1', port=port, debug=app.config.get('DEBUG', False))
