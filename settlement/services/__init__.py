"""Services package: stores, external adapters, the reconciler and the process container."""
