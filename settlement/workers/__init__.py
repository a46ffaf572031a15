"""Workers package: the swap workflow, its lease-guarded driver and the worker process."""
