"""Task reminder scheduling: policy, checkpoints, stores, and lifecycle coupling."""
