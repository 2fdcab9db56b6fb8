"""
Background workers for the CJ Dropshipping integration.

Workers:
- cj_sourcing_worker: every 2 hours, submits waiting products and checks CJ sourcing results
- cj_tracking_worker: every 4 hours, polls CJ for tracking numbers of open orders
"""

from louiemae.workers.cj_sourcing_worker import run_cj_sourcing_loop, run_cj_sourcing_once
from louiemae.workers.cj_tracking_worker import run_cj_tracking_loop, run_cj_tracking_once

__all__ = [
    "run_cj_sourcing_loop",
    "run_cj_sourcing_once",
    "run_cj_tracking_loop",
    "run_cj_tracking_once",
]
