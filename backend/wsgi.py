# backend/wsgi.py
# Serve with a single worker process when SYNC_ENABLED is set; each
# process that imports this module runs its own sync scheduler.
from app import create_app
from app.services.sync_scheduler import start_order_sync

app = create_app()
start_order_sync(app)
