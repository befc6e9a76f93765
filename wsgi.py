# wsgi.py
"""
WSGI entry point: `gunicorn -c gunicorn_config.py wsgi:app`, or run directly
for the development server.
"""

import logging
import os
from logging.handlers import SysLogHandler

from app import create_app

app = create_app(os.environ.get('FLASK_ENV', 'development'))

if app.config.get('SYSLOG_SERVER'):
    syslog = SysLogHandler(address=app.config['SYSLOG_SERVER'])
    syslog.setLevel(logging.ERROR)
    app.logger.addHandler(syslog)


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.logger.info(f"Development server on port {port}, debug={app.debug}")

    # A reloader child process would open the station camera a second time
    app.run(host='0.0.0.0', port=port, debug=app.debug, use_reloader=False, threaded=True)
