import logging
import os

import uvicorn

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # Several workers are safe: slot reservation is serialised by the database, not the process
    uvicorn.run(
        "clinic_scheduler.main:app",
        host=os.environ.get("CLINIC_SCHEDULER_HOST", "0.0.0.0"),
        port=int(os.environ.get("CLINIC_SCHEDULER_PORT", "8000")),
        workers=int(os.environ.get("CLINIC_SCHEDULER_WORKERS", "1")),
    )
